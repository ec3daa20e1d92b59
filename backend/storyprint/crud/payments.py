"""印刷订单支付记录 CRUD 操作"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, select

from storyprint.enums import PaymentStatus
from storyprint.models import PrintOrderPayment, utc_now


def create(
    *,
    session: Session,
    user_id: int,
    print_order_id: int,
    personalized_book_id: int,
    checkout_session_id: str,
    amount: Decimal,
    currency: str,
    extra_data: dict[str, Any] | None = None,
) -> PrintOrderPayment:
    payment = PrintOrderPayment(
        user_id=user_id,
        print_order_id=print_order_id,
        personalized_book_id=personalized_book_id,
        checkout_session_id=checkout_session_id,
        amount=amount,
        currency=currency,
        status=PaymentStatus.pending,
        extra_data=extra_data,
    )
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


def get_by_session(*, session: Session, checkout_session_id: str) -> PrintOrderPayment | None:
    return session.exec(
        select(PrintOrderPayment).where(
            PrintOrderPayment.checkout_session_id == checkout_session_id
        )
    ).first()


def list_for_order(*, session: Session, print_order_id: int) -> list[PrintOrderPayment]:
    return list(
        session.exec(
            select(PrintOrderPayment)
            .where(PrintOrderPayment.print_order_id == print_order_id)
            .order_by(PrintOrderPayment.created_at.desc())  # type: ignore[union-attr]
        ).all()
    )


def claim_success(
    *,
    session: Session,
    payment_id: int,
    payment_intent_id: str | None,
    payment_method: str | None,
    receipt_url: str | None,
    extra_data: dict[str, Any] | None,
) -> bool:
    """
    认领一笔支付的成功回调（CAS）

    只有 callback_processed = false 的记录会被更新为 succeeded + callback_processed = true。
    不提交事务：调用方在同一事务里继续更新订单、提交印刷任务，最后统一提交或回滚。
    并发的另一方会在行锁释放后看到 rowcount = 0。

    Returns:
        是否认领成功
    """
    result = session.exec(  # type: ignore[call-overload]
        update(PrintOrderPayment)
        .where(
            PrintOrderPayment.id == payment_id,
            PrintOrderPayment.callback_processed == False,  # noqa: E712
        )
        .values(
            status=PaymentStatus.succeeded,
            callback_processed=True,
            payment_intent_id=payment_intent_id,
            payment_method=payment_method,
            receipt_url=receipt_url,
            extra_data=extra_data,
            updated_at=utc_now(),
        )
    )
    session.flush()
    return result.rowcount == 1


def supersede_pending(
    *, session: Session, print_order_id: int, superseded_by: str
) -> list[PrintOrderPayment]:
    """
    新的 Checkout 取代订单其它仍在等待支付的记录（标记为 failed）

    callback_processed 保持 false：被取代的 Session 如果仍然被付款，
    成功回调还能认领它（订单已付款时按重复付款退款）。
    """
    payments = [
        p
        for p in list_for_order(session=session, print_order_id=print_order_id)
        if p.status == PaymentStatus.pending
        and not p.callback_processed
        and p.checkout_session_id != superseded_by
    ]
    for payment in payments:
        payment.status = PaymentStatus.failed
        payment.extra_data = {**(payment.extra_data or {}), "superseded_by": superseded_by}
        payment.updated_at = utc_now()
        session.add(payment)
    session.commit()
    return payments


def claim_duplicate(*, session: Session, payment_id: int, payment_intent_id: str | None) -> bool:
    """
    认领一笔重复付款（订单已由另一笔支付付清）

    与 claim_success 一样以 callback_processed 做 CAS，保证只退款一次；
    状态记为 failed，退款成功后再改为 refunded。
    """
    result = session.exec(  # type: ignore[call-overload]
        update(PrintOrderPayment)
        .where(
            PrintOrderPayment.id == payment_id,
            PrintOrderPayment.callback_processed == False,  # noqa: E712
        )
        .values(
            status=PaymentStatus.failed,
            callback_processed=True,
            payment_intent_id=payment_intent_id,
            updated_at=utc_now(),
        )
    )
    session.commit()
    return result.rowcount == 1


def record_refund(*, session: Session, payment: PrintOrderPayment, refund_id: str) -> PrintOrderPayment:
    payment.status = PaymentStatus.refunded
    payment.extra_data = {**(payment.extra_data or {}), "refund_id": refund_id}
    payment.updated_at = utc_now()
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


def mark_failed(*, session: Session, payment_id: int) -> bool:
    """
    标记支付失败（取消、过期）

    已经成功处理过的支付不会被改成失败。
    """
    result = session.exec(  # type: ignore[call-overload]
        update(PrintOrderPayment)
        .where(
            PrintOrderPayment.id == payment_id,
            PrintOrderPayment.callback_processed == False,  # noqa: E712
        )
        .values(
            status=PaymentStatus.failed,
            callback_processed=True,
            updated_at=utc_now(),
        )
    )
    session.commit()
    return result.rowcount == 1


def list_pending_since(*, session: Session, since: datetime) -> list[PrintOrderPayment]:
    """查询 since 之后创建、仍在等待支付且未处理的记录"""
    return list(
        session.exec(
            select(PrintOrderPayment)
            .where(PrintOrderPayment.status == PaymentStatus.pending)
            .where(PrintOrderPayment.callback_processed == False)  # noqa: E712
            .where(PrintOrderPayment.created_at >= since)
            .order_by(PrintOrderPayment.created_at)  # type: ignore[arg-type]
        ).all()
    )


def list_by_payment_intent(*, session: Session, payment_intent_id: str) -> list[PrintOrderPayment]:
    return list(
        session.exec(
            select(PrintOrderPayment).where(
                PrintOrderPayment.payment_intent_id == payment_intent_id
            )
        ).all()
    )


def mark_refunded(*, session: Session, payment_intent_id: str) -> list[PrintOrderPayment]:
    """把该 PaymentIntent 对应的成功支付标记为已退款，返回被更新的记录"""
    payments = [
        p
        for p in list_by_payment_intent(session=session, payment_intent_id=payment_intent_id)
        if p.status == PaymentStatus.succeeded
    ]
    for payment in payments:
        payment.status = PaymentStatus.refunded
        payment.updated_at = utc_now()
        session.add(payment)
    session.commit()
    for payment in payments:
        session.refresh(payment)
    return payments
