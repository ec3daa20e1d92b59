"""
绘本购买与 Stripe Webhook 处理

- 用户为个性化绘本发起 Checkout，支付成功后同步确认
- Webhook 分发：绘本购买生成收据，印刷订单走对账服务，退款更新收据
- 管理员退款

绘本的 is_paid 只会通过条件更新从 false 变为 true 一次；收据以 PaymentIntent 为幂等键，
同步确认和 Webhook 同时到达时两边都能安全执行。
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlmodel import Session

from storyprint import crud
from storyprint.api.errors import (
    AccessDenied,
    AppError,
    PreconditionFailed,
    ValidationFailed,
    not_found,
)
from storyprint.core.config import settings
from storyprint.enums import OrderPaymentStatus, ReceiptStatus
from storyprint.integrations.stripe_gateway import StripeGateway, from_cents
from storyprint.models import PersonalizedBook, Receipt, User
from storyprint.services.print_orders import PrintOrderService

logger = logging.getLogger(__name__)

BOOK_SERVICE = "personalized_book"
PRINT_SERVICE = "print_order"

# Stripe 只接受这几个退款原因，其它说明只记在收据上
_STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _id_of(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def book_snapshot(book: PersonalizedBook) -> dict[str, Any]:
    """收据中保存的绘本快照"""
    content = book.personalized_content or {}
    return {
        "book_title": book.book_title,
        "child_name": book.child_name,
        "child_age": book.child_age,
        "genre": content.get("genre"),
        "author": content.get("author"),
    }


class BookPaymentService:
    def __init__(
        self,
        *,
        session: Session,
        gateway: StripeGateway,
        print_orders: PrintOrderService | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._print_orders = print_orders
        self._handlers: dict[str, Callable[[dict[str, Any]], bool]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "checkout.session.expired": self._on_checkout_expired,
            "payment_intent.succeeded": self._on_payment_intent_succeeded,
            "payment_intent.payment_failed": self._on_payment_intent_failed,
            "charge.refunded": self._on_charge_refunded,
        }

    # ------------------------------------------------------------------
    # 绘本购买
    # ------------------------------------------------------------------

    def initiate_payment(self, book_id: int, user: User) -> dict[str, Any]:
        book = crud.books.get_owned(session=self._session, book_id=book_id, user_id=user.id)
        if book is None:
            raise not_found("Personalized book")
        if book.is_paid:
            raise PreconditionFailed(message="This book has already been purchased")

        checkout = self._gateway.create_checkout_session(
            amount=book.price,
            metadata={
                "service": BOOK_SERVICE,
                "personalized_book_id": book.id,
                "user_id": user.id,
                "book_title": book.book_title,
            },
            customer={"email": user.email, "name": user.name},
            success_url=settings.book_checkout_success_url,
            cancel_url=settings.book_checkout_cancel_url,
            product_name=book.book_title,
            description=f"Personalized book for {book.child_name}",
        )
        logger.info("Checkout session %s opened for book %s", checkout.id, book.id)
        return {
            "checkout_url": checkout.url,
            "checkout_session_id": checkout.id,
            "amount": book.price,
            "currency": self._gateway.currency,
        }

    def confirm_payment_with_session(self, session_id: str, user: User) -> dict[str, Any]:
        """
        支付完成跳转回前端后的同步确认

        Raises:
            ValidationFailed: Session 不是绘本购买，或实付金额与售价不符
            AccessDenied: Session 属于其它用户
            PreconditionFailed: 尚未支付完成
        """
        state = self._gateway.get_checkout_session(session_id)
        book_id = _int_or_none(state.metadata.get("personalized_book_id"))
        if book_id is None or state.metadata.get("print_order_id"):
            raise ValidationFailed(message="Checkout session is not a book purchase")
        if _int_or_none(state.metadata.get("user_id")) != user.id:
            raise AccessDenied(message="This payment belongs to another user")
        if not state.is_paid:
            raise PreconditionFailed(message=f"Payment not completed: {state.payment_status}")

        book = crud.books.get_owned(session=self._session, book_id=book_id, user_id=user.id)
        if book is None:
            raise not_found("Personalized book")
        if not self._gateway.validate_payment_amount(state.amount_total, book.price):
            logger.error(
                "Amount mismatch for session %s: paid %s, book %s costs %s",
                session_id,
                state.amount_total,
                book.id,
                book.price,
            )
            raise ValidationFailed(message="Paid amount does not match the book price")

        intent = state.payment_intent
        if intent is None:
            raise PreconditionFailed(message="Payment has no payment intent yet")
        receipt, newly_paid = self._complete_book_purchase(
            book=book,
            user=user,
            payment_intent_id=intent.id,
            amount=state.amount_total or book.price,
            currency=state.currency,
            customer_id=intent.customer,
            metadata=state.metadata,
        )
        self._session.refresh(book)
        return {"book": book, "receipt": receipt, "already_processed": not newly_paid}

    def _complete_book_purchase(
        self,
        *,
        book: PersonalizedBook,
        user: User | None,
        payment_intent_id: str,
        amount: Decimal,
        currency: str | None,
        customer_id: str | None,
        metadata: Mapping[str, Any],
    ) -> tuple[Receipt, bool]:
        """标记绘本已支付（至多一次）并写入收据（按 PaymentIntent 合并）"""
        charge = self._gateway.get_receipt(payment_intent_id)
        newly_paid = crud.books.mark_paid(
            session=self._session,
            book_id=book.id,
            payment_id=payment_intent_id,
            paid_at=charge.paid_at,
        )
        receipt, created = crud.receipts.create(
            session=self._session,
            data={
                "user_id": book.user_id,
                "personalized_book_id": book.id,
                "stripe_payment_intent_id": payment_intent_id,
                "stripe_customer_id": charge.customer_id or customer_id,
                "stripe_charge_id": charge.charge_id,
                "amount": amount,
                "currency": (currency or self._gateway.currency).upper(),
                "status": ReceiptStatus.succeeded,
                "payment_method": charge.payment_method_type,
                "receipt_url": charge.receipt_url,
                "receipt_number": charge.receipt_number,
                "book_details": book_snapshot(book),
                "user_details": crud.users.snapshot(user),
                "extra_data": {k: str(v) for k, v in metadata.items()},
                "paid_at": charge.paid_at or datetime.now(timezone.utc),
            },
        )
        logger.info(
            "Book %s purchase recorded: receipt %s (%s), newly paid=%s",
            book.id,
            receipt.reference_code,
            "created" if created else "merged",
            newly_paid,
        )
        return receipt, newly_paid

    def _book_purchase_from_event(
        self,
        *,
        metadata: Mapping[str, Any],
        payment_intent_id: str | None,
        amount: Decimal | None,
        currency: str | None,
        customer_id: str | None,
    ) -> bool:
        book_id = _int_or_none(metadata.get("personalized_book_id"))
        if book_id is None or not payment_intent_id:
            logger.info("Book payment event without book id or payment intent, ignored")
            return False
        book = crud.books.get(session=self._session, book_id=book_id)
        if book is None:
            raise not_found("Personalized book")
        user_id = _int_or_none(metadata.get("user_id"))
        if user_id is not None and user_id != book.user_id:
            logger.error("Book %s payment metadata names user %s, owner is %s", book.id, user_id, book.user_id)
            raise ValidationFailed(message="Payment metadata does not match the book owner")
        user = crud.users.get(session=self._session, user_id=book.user_id)
        self._complete_book_purchase(
            book=book,
            user=user,
            payment_intent_id=payment_intent_id,
            amount=amount if amount is not None else book.price,
            currency=currency,
            customer_id=customer_id,
            metadata=metadata,
        )
        return True

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def handle_webhook_event(self, event: Mapping[str, Any]) -> dict[str, Any]:
        """
        处理已验签的 Stripe 事件

        同一个 event id 只处理一次；重复投递直接确认（duplicate=True）。
        绘本购买分支出错时抛出异常，不记录事件，Stripe 会重新投递。
        """
        event_id = event.get("id")
        event_type = str(event.get("type") or "")
        if not event_id:
            raise ValidationFailed(message="Webhook event has no id")
        if crud.stripe_events.exists(session=self._session, event_id=event_id):
            logger.info("Duplicate Stripe event %s (%s) acknowledged", event_id, event_type)
            return {"event_id": event_id, "event_type": event_type, "duplicate": True, "handled": False}

        obj = dict((event.get("data") or {}).get("object") or {})
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type %s (%s)", event_type, event_id)
            handled = False
        else:
            handled = handler(obj)

        recorded = crud.stripe_events.record(
            session=self._session, event_id=event_id, event_type=event_type, payload=dict(event)
        )
        return {
            "event_id": event_id,
            "event_type": event_type,
            "duplicate": not recorded,
            "handled": handled,
        }

    def _on_checkout_completed(self, obj: dict[str, Any]) -> bool:
        metadata = obj.get("metadata") or {}
        if metadata.get("print_order_id"):
            if self._print_orders is None:
                logger.error("Print order checkout %s completed but no print service configured", obj.get("id"))
                return False
            try:
                self._print_orders.handle_payment_success_callback(obj["id"])
            except AppError as e:
                # 支付记录保持 pending，由扫描任务重试
                logger.warning("Print order checkout %s not reconciled: %s", obj.get("id"), e.message)
                return False
            return True

        if obj.get("payment_status") != "paid":
            logger.info("Checkout session %s completed but not paid yet", obj.get("id"))
            return False
        return self._book_purchase_from_event(
            metadata=metadata,
            payment_intent_id=_id_of(obj.get("payment_intent")),
            amount=from_cents(obj.get("amount_total")),
            currency=obj.get("currency"),
            customer_id=_id_of(obj.get("customer")),
        )

    def _on_checkout_expired(self, obj: dict[str, Any]) -> bool:
        payment = crud.payments.get_by_session(session=self._session, checkout_session_id=obj.get("id") or "")
        if payment is None:
            return False
        return crud.payments.mark_failed(session=self._session, payment_id=payment.id)

    def _on_payment_intent_succeeded(self, obj: dict[str, Any]) -> bool:
        metadata = obj.get("metadata") or {}
        if metadata.get("service") != BOOK_SERVICE or metadata.get("print_order_id"):
            return False
        return self._book_purchase_from_event(
            metadata=metadata,
            payment_intent_id=obj.get("id"),
            amount=from_cents(obj.get("amount_received") or obj.get("amount")),
            currency=obj.get("currency"),
            customer_id=_id_of(obj.get("customer")),
        )

    def _on_payment_intent_failed(self, obj: dict[str, Any]) -> bool:
        receipt = crud.receipts.update_status(
            session=self._session, payment_intent_id=obj.get("id") or "", status=ReceiptStatus.failed
        )
        return receipt is not None

    def _on_charge_refunded(self, obj: dict[str, Any]) -> bool:
        intent_id = _id_of(obj.get("payment_intent"))
        if not intent_id:
            return False
        refunded = from_cents(obj.get("amount_refunded")) or Decimal("0.00")
        refunds = (obj.get("refunds") or {}).get("data") or []
        reason = refunds[0].get("reason") if refunds else None

        receipt = crud.receipts.mark_refunded(
            session=self._session, payment_intent_id=intent_id, refund_amount=refunded, reason=reason
        )
        payments = crud.payments.mark_refunded(session=self._session, payment_intent_id=intent_id)
        for payment in payments:
            order = crud.print_orders.get(session=self._session, order_id=payment.print_order_id)
            if order is not None:
                order.payment_status = OrderPaymentStatus.refunded
                crud.print_orders.touch(order)
                self._session.add(order)
        self._session.commit()
        logger.info(
            "Charge for %s refunded (%s): receipt=%s print payments=%s",
            intent_id,
            refunded,
            receipt.reference_code if receipt else None,
            len(payments),
        )
        return receipt is not None or bool(payments)

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------

    def refund_receipt(
        self, reference_code: str, amount: Decimal | None = None, reason: str | None = None
    ) -> dict[str, Any]:
        """
        管理员退款

        amount 为空时退还剩余全部金额；支持多次部分退款，refund_amount 为累计值。
        """
        receipt = crud.receipts.get_by_reference_code(session=self._session, reference_code=reference_code)
        if receipt is None:
            raise not_found("Receipt")
        if receipt.status != ReceiptStatus.succeeded:
            raise PreconditionFailed(message="Only succeeded payments can be refunded")

        already = Decimal(receipt.refund_amount or 0)
        remaining = Decimal(receipt.amount) - already
        if remaining <= 0:
            raise PreconditionFailed(message="Receipt has already been fully refunded")
        if amount is not None and (amount <= 0 or amount > remaining):
            raise ValidationFailed(message=f"Refund amount must be between 0.01 and {remaining}")

        stripe_reason = reason if reason in _STRIPE_REFUND_REASONS else "requested_by_customer"
        refund = self._gateway.create_refund(
            receipt.stripe_payment_intent_id, amount=amount, reason=stripe_reason
        )
        receipt = crud.receipts.mark_refunded(
            session=self._session,
            payment_intent_id=receipt.stripe_payment_intent_id,
            refund_amount=already + refund.amount,
            reason=reason or stripe_reason,
        )
        logger.info("Receipt %s refunded %s via %s", reference_code, refund.amount, refund.id)
        return {"receipt": receipt, "refund": refund}
