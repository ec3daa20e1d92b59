"""
印刷订单对账服务

负责从"已付款绘本"到"Lulu 印刷任务"的整条链路：
- 计算页数和报价，创建印刷订单（draft）
- 为订单打开 Stripe Checkout，记录 pending 的支付记录
- 处理支付成功/取消回调，支付确认后立即提交 Lulu 印刷任务
- 同步 Lulu 状态和物流信息
- 扫描 24 小时内仍未处理的支付（唯一的重试机制，由管理员或定时任务触发）

Webhook、支付成功跳转、状态查询和扫描任务最终都走同一个幂等的
handle_payment_success_callback，靠 callback_processed 的条件更新保证
同一笔支付最多提交一次印刷任务。
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, TypeVar

from sqlmodel import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from storyprint import crud
from storyprint.api.errors import (
    AccessDenied,
    AppError,
    PreconditionFailed,
    ServiceOptionIncompatible,
    ValidationFailed,
    VendorAuthError,
    VendorError,
    book_not_paid,
    not_found,
)
from storyprint.core.config import settings
from storyprint.enums import (
    CANCELABLE_STATES,
    TERMINAL_STATES,
    OrderPaymentStatus,
    PaymentStatus,
    PrintOrderStatus,
    ShippingLevel,
    can_transition,
)
from storyprint.integrations.lulu import LuluClient
from storyprint.integrations.oss import OssStorage
from storyprint.integrations.stripe_gateway import StripeGateway
from storyprint.models import PersonalizedBook, PrintOrder, PrintServiceOption, utc_now
from storyprint.services.book_layout import calculate_book_page_count
from storyprint.services.book_pdf import BookPdfRenderer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CENT = Decimal("0.01")

# 本地配送等级 -> Lulu shipping_level，未知值按 GROUND 处理
SHIPPING_LEVEL_MAP: dict[str, str] = {
    ShippingLevel.MAIL.value: "MAIL",
    ShippingLevel.PRIORITY_MAIL.value: "PRIORITY_MAIL",
    ShippingLevel.GROUND.value: "GROUND",
    ShippingLevel.EXPEDITED.value: "EXPEDITED",
    ShippingLevel.EXPRESS.value: "EXPRESS",
}

_SESSION_CLOSED = {"expired", "canceled"}

MIN_QUANTITY, MAX_QUANTITY = 1, 1000
MIN_PRODUCTION_DELAY, MAX_PRODUCTION_DELAY = 60, 2880


class Storage(Protocol):
    def upload_bytes(self, *, name: str, data: bytes, content_type: str = ...) -> str: ...


def map_shipping_level(level: str | ShippingLevel | None) -> str:
    key = getattr(level, "value", level)
    return SHIPPING_LEVEL_MAP.get(str(key or ""), "GROUND")


def _status(value: Any) -> str:
    return str(getattr(value, "value", value))


def _vendor_address(address: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in address.items() if v not in (None, "")}


def apply_base_price(cost: Mapping[str, Any], base_price: Decimal) -> dict[str, Any]:
    """
    在 Lulu 报价上叠加平台加价

    total_cost_incl_tax 提高 base_price；折扣为 0 时去掉 total_discount_amount。
    """
    breakdown = dict(cost)
    try:
        vendor_total = Decimal(str(cost.get("total_cost_incl_tax") or "0"))
        discount = cost.get("total_discount_amount")
        zero_discount = discount is not None and Decimal(str(discount)) == 0
    except InvalidOperation:
        logger.error("Unparseable Lulu cost estimate: %s", cost)
        raise VendorError(message="Print service returned an invalid cost estimate")

    base = Decimal(base_price or 0).quantize(_CENT)
    breakdown["base_price"] = f"{base:.2f}"
    breakdown["total_cost_incl_tax"] = f"{(vendor_total + base).quantize(_CENT):.2f}"
    if zero_discount:
        breakdown.pop("total_discount_amount", None)
    return breakdown


def tracking_from_status(vendor_status: Mapping[str, Any]) -> dict[str, Any] | None:
    """从 Lulu 的 SHIPPED 状态里取出第一条 line item 的物流信息"""
    items = vendor_status.get("line_item_statuses") or []
    if not items:
        return None
    messages = (items[0] or {}).get("messages") or {}
    if not messages.get("tracking_id") and not messages.get("tracking_urls"):
        return None
    return {
        "tracking_id": messages.get("tracking_id"),
        "tracking_urls": list(messages.get("tracking_urls") or []),
        "carrier_name": messages.get("carrier_name"),
        "shipped_at": vendor_status.get("changed") or utc_now().isoformat(),
    }


def _cover_size(dimensions: Mapping[str, Any]) -> tuple[float, float] | None:
    if str(dimensions.get("unit") or "pt").lower() != "pt":
        return None
    try:
        return float(dimensions["width"]), float(dimensions["height"])
    except (KeyError, TypeError, ValueError):
        return None


class PrintOrderService:
    """
    印刷订单对账服务

    依赖显式注入（路由里通过 FastAPI 依赖构造，测试里替换成假实现）：
    - gateway: Stripe 网关
    - fulfillment: Lulu 客户端
    - storage: 对象存储（上传印刷 PDF，返回 Lulu 可下载的地址）
    - renderer: PDF 渲染
    """

    def __init__(
        self,
        *,
        session: Session,
        gateway: StripeGateway,
        fulfillment: LuluClient,
        storage: Storage | OssStorage,
        renderer: BookPdfRenderer,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._fulfillment = fulfillment
        self._storage = storage
        self._renderer = renderer

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _vendor_call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        # 401 时客户端已清掉 token，重试一次会重新认证
        retryer = Retrying(
            retry=retry_if_exception_type(VendorAuthError),
            stop=stop_after_attempt(2),
            reraise=True,
        )
        return retryer(fn, *args, **kwargs)

    def _get_order(self, order_id: int, user_id: int | None = None) -> PrintOrder:
        order = crud.print_orders.get(session=self._session, order_id=order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise not_found("Print order")
        return order

    def _get_book(self, book_id: int) -> PersonalizedBook:
        book = crud.books.get(session=self._session, book_id=book_id)
        if book is None:
            raise not_found("Personalized book")
        return book

    def _get_option(self, option_id: int) -> PrintServiceOption:
        option = crud.print_orders.get_service_option(session=self._session, option_id=option_id)
        if option is None:
            raise not_found("Print service option")
        return option

    @staticmethod
    def _transition(order: PrintOrder, new: PrintOrderStatus) -> None:
        if not can_transition(order.status, new):
            raise PreconditionFailed(
                message=f"Print order cannot move from {_status(order.status)} to {new.value}"
            )
        order.status = new
        crud.print_orders.touch(order)

    def _record_error(self, order_id: int) -> None:
        """提交失败后单独提交一次，把订单标记为 error"""
        order = crud.print_orders.get(session=self._session, order_id=order_id)
        if order is None or _status(order.status) in {s.value for s in TERMINAL_STATES}:
            return
        order.status = PrintOrderStatus.error
        crud.print_orders.touch(order)
        self._session.add(order)
        self._session.commit()

    @staticmethod
    def _job_ref(order: PrintOrder) -> dict[str, Any] | None:
        if not order.lulu_print_job_id:
            return None
        return {"lulu_order_id": order.lulu_print_job_id, "status": _status(order.status)}

    @staticmethod
    def _format_job(job: Mapping[str, Any], order: PrintOrder, option: PrintServiceOption) -> dict[str, Any]:
        status = job.get("status") or {}
        costs = dict(job.get("costs") or {})
        base = Decimal(option.base_price or 0).quantize(_CENT)
        try:
            vendor_total = Decimal(str(costs.get("total_cost_incl_tax") or "0"))
        except InvalidOperation:
            vendor_total = Decimal("0")
        costs["base_price"] = f"{base:.2f}"
        costs["final_total"] = f"{(vendor_total + base).quantize(_CENT):.2f}"
        return {
            "lulu_order_id": str(job.get("id")),
            "status": status.get("name"),
            "message": status.get("message"),
            "created_at": job.get("date_created"),
            "shipping_level": job.get("shipping_level"),
            "estimated_shipping_dates": job.get("estimated_shipping_dates"),
            "line_items": [
                {
                    "item_id": item.get("id"),
                    "title": item.get("title"),
                    "quantity": item.get("quantity"),
                    "status": (item.get("status") or {}).get("name"),
                }
                for item in job.get("line_items") or []
            ],
            "costs": costs,
            "internal_order_id": order.id,
        }

    # ------------------------------------------------------------------
    # 报价与下单
    # ------------------------------------------------------------------

    def calculate_print_costs(
        self,
        *,
        pod_package_id: str,
        page_count: int,
        quantity: int,
        shipping_address: Mapping[str, Any],
        shipping_level: str | ShippingLevel | None,
    ) -> dict[str, Any]:
        line_items = [
            {"page_count": page_count, "pod_package_id": pod_package_id, "quantity": quantity}
        ]
        return self._vendor_call(
            self._fulfillment.calculate_print_job_cost,
            line_items,
            _vendor_address(shipping_address),
            map_shipping_level(shipping_level),
        )

    def create_print_order_with_cost(self, user_id: int, order_data: Mapping[str, Any]) -> dict[str, Any]:
        """
        创建印刷订单并附上报价

        所有校验和报价都在写库之前完成，失败时不会留下订单。

        Raises:
            NotFound: 绘本不存在或不属于该用户
            PaymentRequired: 绘本未支付
            ValidationFailed: 印刷服务选项不可用或参数不合法
            ServiceOptionIncompatible: 页数不在该服务选项支持的范围内
        """
        quantity = int(order_data.get("quantity", 1))
        if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
            raise ValidationFailed(message=f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}")
        production_delay = int(order_data.get("production_delay", MIN_PRODUCTION_DELAY))
        if not MIN_PRODUCTION_DELAY <= production_delay <= MAX_PRODUCTION_DELAY:
            raise ValidationFailed(
                message=f"Production delay must be between {MIN_PRODUCTION_DELAY} and {MAX_PRODUCTION_DELAY} minutes"
            )
        shipping_address = dict(order_data.get("shipping_address") or {})
        if not shipping_address:
            raise ValidationFailed(message="Shipping address is required")

        book = crud.books.get_owned(
            session=self._session, book_id=order_data["personalized_book_id"], user_id=user_id
        )
        if book is None:
            raise not_found("Personalized book")
        if not book.is_paid:
            raise book_not_paid()

        option = crud.print_orders.get_service_option(
            session=self._session, option_id=order_data["service_option_id"]
        )
        if option is None or not option.is_active:
            raise ValidationFailed(message="Invalid print service option")

        page_count = calculate_book_page_count(book)
        if page_count < option.min_pages or page_count > option.max_pages:
            raise ServiceOptionIncompatible(
                message=(
                    f"Page count ({page_count}) is outside the allowed range for this service "
                    f"({option.min_pages}-{option.max_pages} pages)"
                )
            )

        shipping_level = map_shipping_level(order_data.get("shipping_level"))
        cost = self.calculate_print_costs(
            pod_package_id=option.pod_package_id,
            page_count=page_count,
            quantity=quantity,
            shipping_address=shipping_address,
            shipping_level=shipping_level,
        )
        breakdown = apply_base_price(cost, option.base_price)

        order = crud.print_orders.create(
            session=self._session,
            data={
                "user_id": user_id,
                "personalized_book_id": book.id,
                "service_option_id": option.id,
                "quantity": quantity,
                "shipping_address": shipping_address,
                "shipping_level": ShippingLevel(shipping_level),
                "contact_email": order_data["contact_email"],
                "production_delay": production_delay,
                "cost_breakdown": breakdown,
                "status": PrintOrderStatus.draft,
            },
        )
        logger.info(
            "Print order %s created for user %s, total %s",
            order.id,
            user_id,
            breakdown.get("total_cost_incl_tax"),
        )
        return {
            "print_order": order,
            "cost_breakdown": breakdown,
            "service_option": option,
            "book": {"title": book.book_title, "child_name": book.child_name, "page_count": page_count},
        }

    def create_print_order_checkout(self, print_order_id: int, user_id: int) -> dict[str, Any]:
        """为印刷订单创建 Stripe Checkout，并记录一条 pending 的支付记录"""
        order = self._get_order(print_order_id, user_id)
        if _status(order.payment_status) == OrderPaymentStatus.paid.value:
            raise PreconditionFailed(message="Print order already paid for")
        if _status(order.status) in {s.value for s in TERMINAL_STATES}:
            raise PreconditionFailed(message=f"Print order is {_status(order.status)}")
        breakdown = order.cost_breakdown or {}
        if not breakdown.get("total_cost_incl_tax"):
            raise PreconditionFailed(message="Print order has no cost estimate")

        amount = Decimal(str(breakdown["total_cost_incl_tax"])).quantize(_CENT)
        currency = str(breakdown.get("currency") or self._gateway.currency).lower()
        book = self._get_book(order.personalized_book_id)
        option = self._get_option(order.service_option_id)
        receipt = crud.receipts.get_for_book(session=self._session, book_id=book.id, user_id=user_id)

        checkout = self._gateway.create_checkout_session(
            amount=amount,
            currency=currency,
            metadata={
                "service": "print_order",
                "print_order_id": order.id,
                "personalized_book_id": book.id,
                "user_id": user_id,
                "book_title": book.book_title,
            },
            customer={"email": order.contact_email, "name": order.shipping_address.get("name")},
            success_url=settings.print_checkout_success_url,
            cancel_url=settings.print_checkout_cancel_url,
            product_name=f"Printed copy: {book.book_title}",
            description=f"{order.quantity} x {option.name}",
        )
        extra: dict[str, Any] = {"book_title": book.book_title}
        if receipt is not None:
            extra["receipt_reference_code"] = receipt.reference_code
        crud.payments.create(
            session=self._session,
            user_id=user_id,
            print_order_id=order.id,
            personalized_book_id=book.id,
            checkout_session_id=checkout.id,
            amount=amount,
            currency=currency,
            extra_data=extra,
        )
        superseded = crud.payments.supersede_pending(
            session=self._session, print_order_id=order.id, superseded_by=checkout.id
        )
        if superseded:
            logger.info(
                "Checkout session %s supersedes %s for print order %s",
                checkout.id,
                [p.checkout_session_id for p in superseded],
                order.id,
            )
        self._session.refresh(order)
        logger.info("Checkout session %s opened for print order %s", checkout.id, order.id)
        return {
            "checkout_url": checkout.url,
            "checkout_session_id": checkout.id,
            "amount": amount,
            "currency": currency,
            "print_order": order,
        }

    # ------------------------------------------------------------------
    # 支付回调
    # ------------------------------------------------------------------

    def handle_payment_success_callback(
        self, checkout_session_id: str, *, resubmit_errored: bool = False
    ) -> dict[str, Any]:
        """
        处理支付成功（跳转、Webhook、状态查询和扫描任务共用）

        支付确认、订单支付信息更新和印刷任务提交在同一个事务里：
        - callback_processed 通过条件更新认领，并发的另一方拿到 already_processed
        - 订单的付款状态同样通过条件更新认领；订单已由另一笔支付付清时，
          这笔支付按重复付款处理（原路退款），返回 already_processed
        - 提交印刷任务失败时整个事务回滚，支付记录保持 pending 等待扫描任务重试，
          订单单独标记为 error

        Args:
            resubmit_errored: 允许处理已处于 error 状态的订单（管理员重提和手动扫描）

        Returns:
            {"print_order", "payment", "lulu_print_job", "already_processed"}，
            重复付款时另带 duplicate_payment=True
        """
        state = self._gateway.get_checkout_session(checkout_session_id)
        if not state.is_paid:
            raise PreconditionFailed(message=f"Payment not completed: {state.payment_status}")

        payment = crud.payments.get_by_session(
            session=self._session, checkout_session_id=checkout_session_id
        )
        if payment is None:
            raise not_found("Payment record")
        order = self._get_order(payment.print_order_id)

        if payment.callback_processed:
            return {
                "print_order": order,
                "payment": payment,
                "lulu_print_job": self._job_ref(order),
                "already_processed": True,
            }
        if _status(order.payment_status) == OrderPaymentStatus.paid.value:
            return self._settle_duplicate_payment(payment, order, state)
        if _status(order.status) == PrintOrderStatus.error.value and not resubmit_errored:
            raise PreconditionFailed(message="Print order is in error state and must be resubmitted")

        intent = state.payment_intent
        extra = dict(payment.extra_data or {})
        extra["stripe_metadata"] = dict(state.metadata)
        claimed = crud.payments.claim_success(
            session=self._session,
            payment_id=payment.id,
            payment_intent_id=intent.id if intent else None,
            payment_method=(intent.payment_method if intent else None) or "card",
            receipt_url=intent.receipt_url if intent else None,
            extra_data=extra,
        )
        if not claimed:
            self._session.rollback()
            self._session.refresh(payment)
            self._session.refresh(order)
            logger.info("Checkout session %s was processed concurrently", checkout_session_id)
            return {
                "print_order": order,
                "payment": payment,
                "lulu_print_job": self._job_ref(order),
                "already_processed": True,
            }

        order_id = order.id
        if not crud.print_orders.claim_payment(
            session=self._session,
            order_id=order_id,
            payment_id=intent.id if intent else None,
            paid_amount=state.amount_total if state.amount_total is not None else payment.amount,
        ):
            self._session.rollback()
            self._session.refresh(payment)
            self._session.refresh(order)
            return self._settle_duplicate_payment(payment, order, state)

        self._session.refresh(order)
        if _status(order.status) == PrintOrderStatus.error.value and not order.lulu_print_job_id:
            order.status = PrintOrderStatus.draft
            crud.print_orders.touch(order)
            self._session.add(order)

        try:
            job = self._submit(order)
            self._session.commit()
        except Exception as e:
            self._session.rollback()
            logger.error(
                "Print job submission failed for order %s (session %s): %s",
                order_id,
                checkout_session_id,
                e,
            )
            self._record_error(order_id)
            if isinstance(e, AppError):
                raise
            raise VendorError(message="Failed to submit print job") from e

        self._session.refresh(order)
        self._session.refresh(payment)
        logger.info("Payment %s confirmed, print order %s submitted", payment.id, order_id)
        return {
            "print_order": order,
            "payment": payment,
            "lulu_print_job": job,
            "already_processed": False,
        }

    def _settle_duplicate_payment(self, payment, order: PrintOrder, state) -> dict[str, Any]:
        """订单已由另一笔支付付清：认领这笔支付并原路退款，不再提交印刷任务"""
        intent = state.payment_intent
        claimed = crud.payments.claim_duplicate(
            session=self._session,
            payment_id=payment.id,
            payment_intent_id=intent.id if intent else None,
        )
        self._session.refresh(payment)
        if claimed:
            logger.error(
                "Duplicate payment for print order %s: session %s paid after order was settled by %s",
                order.id,
                payment.checkout_session_id,
                order.payment_id,
            )
            if intent is not None:
                try:
                    refund = self._gateway.create_refund(intent.id, reason="duplicate")
                except AppError as e:
                    logger.error("Refund of duplicate payment %s failed: %s", intent.id, e.message)
                else:
                    crud.payments.record_refund(session=self._session, payment=payment, refund_id=refund.id)
        return {
            "print_order": order,
            "payment": payment,
            "lulu_print_job": self._job_ref(order),
            "already_processed": True,
            "duplicate_payment": True,
        }

    def handle_payment_cancel_callback(self, checkout_session_id: str) -> dict[str, Any]:
        payment = crud.payments.get_by_session(
            session=self._session, checkout_session_id=checkout_session_id
        )
        if payment is None:
            raise not_found("Payment record")
        if _status(payment.status) != PaymentStatus.succeeded.value:
            crud.payments.mark_failed(session=self._session, payment_id=payment.id)
            self._session.refresh(payment)
            logger.info("Checkout session %s canceled", checkout_session_id)
        order = self._get_order(payment.print_order_id)
        return {"print_order": order, "payment": payment}

    def check_payment_status(self, checkout_session_id: str, user_id: int) -> dict[str, Any]:
        """用户主动查询支付结果；已付款但回调还没处理时顺带完成处理"""
        payment = crud.payments.get_by_session(
            session=self._session, checkout_session_id=checkout_session_id
        )
        if payment is None:
            raise not_found("Payment record")
        if payment.user_id != user_id:
            raise AccessDenied(message="This payment belongs to another user")

        state = self._gateway.get_checkout_session(checkout_session_id)
        if state.is_paid and not payment.callback_processed:
            result = self.handle_payment_success_callback(checkout_session_id)
        else:
            result = {
                "print_order": self._get_order(payment.print_order_id),
                "payment": payment,
                "lulu_print_job": None,
                "already_processed": payment.callback_processed,
            }
        result["payment_status"] = state.payment_status
        result["session_status"] = state.status
        return result

    # ------------------------------------------------------------------
    # 印刷任务
    # ------------------------------------------------------------------

    def _submit(self, order: PrintOrder) -> dict[str, Any]:
        """
        渲染、上传、校验并提交印刷任务（不提交事务）

        成功后订单依次进入 created（拿到任务 ID）和 in_production。
        """
        if order.lulu_print_job_id:
            return self._job_ref(order) or {}
        if _status(order.payment_status) != OrderPaymentStatus.paid.value:
            raise PreconditionFailed(message="Print order has not been paid")

        book = self._get_book(order.personalized_book_id)
        option = self._get_option(order.service_option_id)
        pod = option.pod_package_id
        page_count = calculate_book_page_count(book)

        interior = self._renderer.render_interior(book, trim_size=option.trim_size)
        if interior.page_count != page_count:
            raise ValidationFailed(
                message=f"Rendered interior has {interior.page_count} pages, expected {page_count}"
            )
        dimensions = self._vendor_call(self._fulfillment.calculate_cover_dimensions, pod, page_count)
        cover = self._renderer.render_cover(
            book, trim_size=option.trim_size, cover_size=_cover_size(dimensions or {})
        )

        stamp = int(time.time())
        interior_url = self._storage.upload_bytes(
            name=f"{stamp}-interior-{book.id}.pdf", data=interior.data
        )
        cover_url = self._storage.upload_bytes(name=f"{stamp}-cover-{book.id}.pdf", data=cover.data)

        interior_check = self._vendor_call(self._fulfillment.validate_interior_file, interior_url, pod)
        self._vendor_call(self._fulfillment.wait_for_validation, interior_check, "interior")
        cover_check = self._vendor_call(
            self._fulfillment.validate_cover_file, cover_url, pod, page_count
        )
        self._vendor_call(self._fulfillment.wait_for_validation, cover_check, "cover")

        payload = {
            "contact_email": order.contact_email,
            "external_id": str(order.id),
            "production_delay": order.production_delay,
            "shipping_level": map_shipping_level(order.shipping_level),
            "shipping_address": _vendor_address(order.shipping_address),
            "line_items": [
                {
                    "title": book.book_title,
                    "external_id": f"item-{book.id}",
                    "quantity": order.quantity,
                    "printable_normalization": {
                        "pod_package_id": pod,
                        "interior": {"source_url": interior_url},
                        "cover": {"source_url": cover_url},
                    },
                }
            ],
        }
        job = self._vendor_call(self._fulfillment.create_print_job, payload)

        order.lulu_print_job_id = str(job["id"])
        order.external_id = str(order.id)
        self._transition(order, PrintOrderStatus.created)
        self._transition(order, PrintOrderStatus.in_production)
        self._session.add(order)
        self._session.flush()
        logger.info("Print order %s submitted to Lulu as job %s", order.id, order.lulu_print_job_id)
        return self._format_job(job, order, option)

    def submit_print_job(self, print_order_id: int) -> dict[str, Any]:
        """
        提交印刷任务

        已有 Lulu 任务 ID 时直接返回（不重复提交）。失败时订单标记为 error 并抛出原错误，
        非业务异常包装成 VendorError。
        """
        order = self._get_order(print_order_id)
        if order.lulu_print_job_id:
            return self._job_ref(order) or {}
        try:
            job = self._submit(order)
            self._session.commit()
        except Exception as e:
            self._session.rollback()
            logger.error("Failed to submit print job for order %s: %s", print_order_id, e)
            self._record_error(print_order_id)
            if isinstance(e, AppError):
                raise
            raise VendorError(message="Failed to submit print job") from e
        return job

    def resubmit_print_order(self, print_order_id: int) -> dict[str, Any]:
        """
        管理员重提 error 状态且没有 Lulu 任务 ID 的订单

        订单已付款时直接重新提交；付款确认随提交一起回滚过的订单，
        通过它仍为 pending 的支付记录重新走一遍支付成功流程。
        """
        order = self._get_order(print_order_id)
        if order.lulu_print_job_id:
            raise PreconditionFailed(message="Print order has already been submitted")
        if _status(order.status) != PrintOrderStatus.error.value:
            raise PreconditionFailed(message="Only orders in error state can be resubmitted")

        if _status(order.payment_status) == OrderPaymentStatus.paid.value:
            order.status = PrintOrderStatus.draft
            crud.print_orders.touch(order)
            self._session.add(order)
            self._session.commit()
            job = self.submit_print_job(print_order_id)
        else:
            pending = [
                p
                for p in crud.payments.list_for_order(session=self._session, print_order_id=order.id)
                if _status(p.status) == PaymentStatus.pending.value and not p.callback_processed
            ]
            if not pending:
                raise PreconditionFailed(message="Print order has no payment to reconcile")
            result = self.handle_payment_success_callback(
                pending[0].checkout_session_id, resubmit_errored=True
            )
            job = result["lulu_print_job"]

        return {"print_order": self._get_order(print_order_id), "lulu_print_job": job}

    # ------------------------------------------------------------------
    # 状态同步
    # ------------------------------------------------------------------

    def _mirror_status(self, order: PrintOrder, vendor_status: Mapping[str, Any]) -> None:
        name = str(vendor_status.get("name") or "").lower()
        try:
            new = PrintOrderStatus(name)
        except ValueError:
            logger.info("Ignoring unknown Lulu status %r for order %s", name, order.id)
            return
        if new.value == _status(order.status) or not can_transition(order.status, new):
            return

        if new is PrintOrderStatus.shipped:
            tracking = tracking_from_status(vendor_status)
            if tracking is None:
                # 没有物流信息时不标记为已发货
                return
            order.tracking_info = tracking

        order.status = new
        crud.print_orders.touch(order)
        self._session.add(order)
        self._session.commit()
        self._session.refresh(order)
        logger.info("Print order %s is now %s", order.id, new.value)

    def get_print_order_status(self, order_id: int, user_id: int | None = None) -> dict[str, Any]:
        """查询订单状态；有 Lulu 任务时同步远端状态，同步失败只记日志并返回本地状态"""
        order = self._get_order(order_id, user_id)
        vendor_status = None
        if order.lulu_print_job_id:
            try:
                vendor_status = self._vendor_call(
                    self._fulfillment.get_print_job_status, order.lulu_print_job_id
                )
            except AppError as e:
                logger.warning(
                    "Failed to get Lulu status for order %s (job %s): %s",
                    order.id,
                    order.lulu_print_job_id,
                    e.message,
                )
            else:
                self._mirror_status(order, vendor_status)

        payments = crud.payments.list_for_order(session=self._session, print_order_id=order.id)
        return {
            "print_order": order,
            "payment": payments[0] if payments else None,
            "lulu_status": vendor_status,
            "tracking_info": order.tracking_info,
        }

    def sync_order_status(self, order_id: int) -> dict[str, Any]:
        return self.get_print_order_status(order_id)

    # ------------------------------------------------------------------
    # 扫描任务
    # ------------------------------------------------------------------

    def process_pending_payments(self, *, retry_errored: bool = False) -> dict[str, Any]:
        """
        扫描最近 PENDING_PAYMENT_WINDOW_HOURS 小时内仍未处理的支付

        - Stripe 已付款：走支付成功流程
        - Session 已过期或取消：标记失败
        - 其它情况保持不变

        单条记录出错只记录到 errors，不影响其它记录。
        retry_errored 为 False 时跳过已处于 error 状态的订单。
        """
        since = utc_now() - timedelta(hours=settings.PENDING_PAYMENT_WINDOW_HOURS)
        pending = crud.payments.list_pending_since(session=self._session, since=since)
        results: dict[str, Any] = {"processed": 0, "failed": 0, "skipped": 0, "errors": []}

        for payment_id, session_id, order_id in [
            (p.id, p.checkout_session_id, p.print_order_id) for p in pending
        ]:
            try:
                state = self._gateway.get_checkout_session(session_id)
                if state.is_paid:
                    order = crud.print_orders.get(session=self._session, order_id=order_id)
                    if (
                        order is not None
                        and _status(order.status) == PrintOrderStatus.error.value
                        and not retry_errored
                    ):
                        results["skipped"] += 1
                        continue
                    self.handle_payment_success_callback(session_id, resubmit_errored=retry_errored)
                    results["processed"] += 1
                elif state.status in _SESSION_CLOSED or state.payment_status in _SESSION_CLOSED:
                    crud.payments.mark_failed(session=self._session, payment_id=payment_id)
                    results["failed"] += 1
                else:
                    results["skipped"] += 1
            except Exception as e:
                self._session.rollback()
                message = e.message if isinstance(e, AppError) else str(e)
                logger.warning("Pending payment %s (%s) not reconciled: %s", payment_id, session_id, message)
                results["errors"].append(
                    {"payment_id": payment_id, "checkout_session_id": session_id, "error": message}
                )

        logger.info(
            "Pending payment sweep: processed=%s failed=%s skipped=%s errors=%s",
            results["processed"],
            results["failed"],
            results["skipped"],
            len(results["errors"]),
        )
        return results

    # ------------------------------------------------------------------
    # 查询、取消、统计
    # ------------------------------------------------------------------

    def list_user_orders(
        self,
        user_id: int,
        *,
        page: int = 1,
        page_size: int = 20,
        status: PrintOrderStatus | None = None,
    ) -> dict[str, Any]:
        items, total = crud.print_orders.list_orders(
            session=self._session, user_id=user_id, status=status, page=page, page_size=page_size
        )
        return {"items": items, "total": total, "page": page, "page_size": page_size}

    def cancel_print_order(self, order_id: int, user_id: int | None = None) -> PrintOrder:
        """取消还没进入生产的订单；有 Lulu 任务时尽量同步取消"""
        order = self._get_order(order_id, user_id)
        if _status(order.status) not in {s.value for s in CANCELABLE_STATES}:
            raise PreconditionFailed(
                message=f"Print order cannot be canceled in status {_status(order.status)}"
            )
        if order.lulu_print_job_id:
            try:
                self._vendor_call(self._fulfillment.cancel_print_job, order.lulu_print_job_id)
            except AppError as e:
                logger.warning(
                    "Failed to cancel Lulu job %s for order %s: %s",
                    order.lulu_print_job_id,
                    order.id,
                    e.message,
                )
        self._transition(order, PrintOrderStatus.canceled)
        self._session.add(order)
        self._session.commit()
        self._session.refresh(order)
        logger.info("Print order %s canceled", order.id)
        return order

    def get_shipping_options(self, order_id: int, user_id: int) -> list[dict[str, Any]]:
        order = self._get_order(order_id, user_id)
        book = self._get_book(order.personalized_book_id)
        option = self._get_option(order.service_option_id)
        line_items = [
            {
                "page_count": calculate_book_page_count(book),
                "pod_package_id": option.pod_package_id,
                "quantity": order.quantity,
            }
        ]
        currency = str((order.cost_breakdown or {}).get("currency") or self._gateway.currency).upper()
        return self._vendor_call(
            self._fulfillment.get_shipping_options,
            line_items,
            _vendor_address(order.shipping_address),
            currency,
        )

    def order_statistics(self) -> dict[str, Any]:
        by_status = crud.print_orders.count_by_status(session=self._session)
        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "by_payment_status": crud.print_orders.count_by_payment_status(session=self._session),
            "paid_revenue": crud.print_orders.paid_revenue(session=self._session),
        }
