"""
收据台账 CRUD 操作

create 以 stripe_payment_intent_id 为幂等键：同一笔支付重复创建时更新已有记录，
reference_code 保持首次生成的值不变。
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from storyprint.api.errors import ValidationFailed
from storyprint.core.snowflake import generate_reference_code
from storyprint.enums import ReceiptStatus
from storyprint.models import Receipt, ReceiptCreate, utc_now

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

# 创建后不允许通过 create/merge 修改的字段
_IMMUTABLE = {"id", "reference_code", "user_id", "personalized_book_id", "created_at"}


def _validate(data: ReceiptCreate | dict[str, Any]) -> ReceiptCreate:
    if isinstance(data, ReceiptCreate):
        return data
    try:
        return ReceiptCreate.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(message=f"Invalid receipt data: {e.errors()[0]['msg']}")


def _merge(receipt: Receipt, payload: ReceiptCreate) -> Receipt:
    for key, value in payload.model_dump(exclude_none=True).items():
        if key in _IMMUTABLE:
            continue
        if key == "amount":
            value = Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
        setattr(receipt, key, value)
    receipt.updated_at = utc_now()
    return receipt


def get_by_payment_intent(*, session: Session, payment_intent_id: str) -> Receipt | None:
    return session.exec(
        select(Receipt).where(Receipt.stripe_payment_intent_id == payment_intent_id)
    ).first()


def get_by_reference_code(*, session: Session, reference_code: str) -> Receipt | None:
    return session.exec(select(Receipt).where(Receipt.reference_code == reference_code)).first()


def get_for_book(*, session: Session, book_id: int, user_id: int) -> Receipt | None:
    return session.exec(
        select(Receipt)
        .where(Receipt.personalized_book_id == book_id, Receipt.user_id == user_id)
        .order_by(Receipt.created_at.desc())  # type: ignore[union-attr]
    ).first()


def create(*, session: Session, data: ReceiptCreate | dict[str, Any]) -> tuple[Receipt, bool]:
    """
    创建收据（同一 PaymentIntent 重复创建时合并更新）

    Args:
        session: 数据库会话
        data: 收据数据

    Returns:
        (收据, 是否新建)

    Raises:
        ValidationFailed: 数据校验不通过时
    """
    payload = _validate(data)

    existing = get_by_payment_intent(
        session=session, payment_intent_id=payload.stripe_payment_intent_id
    )
    if existing is not None:
        _merge(existing, payload)
        session.add(existing)
        session.commit()
        session.refresh(existing)
        return existing, False

    fields = payload.model_dump(exclude_none=True)
    fields["amount"] = Decimal(fields["amount"]).quantize(_CENT, rounding=ROUND_HALF_UP)
    receipt = Receipt(reference_code=generate_reference_code(), **fields)
    session.add(receipt)
    try:
        session.commit()
    except IntegrityError:
        # 并发创建：另一方先插入成功，改为更新它的记录
        session.rollback()
        existing = get_by_payment_intent(
            session=session, payment_intent_id=payload.stripe_payment_intent_id
        )
        if existing is None:
            raise
        logger.info(
            "Receipt for payment intent %s created concurrently, merging",
            payload.stripe_payment_intent_id,
        )
        _merge(existing, payload)
        session.add(existing)
        session.commit()
        session.refresh(existing)
        return existing, False

    session.refresh(receipt)
    return receipt, True


def update_status(
    *, session: Session, payment_intent_id: str, status: ReceiptStatus
) -> Receipt | None:
    receipt = get_by_payment_intent(session=session, payment_intent_id=payment_intent_id)
    if receipt is None:
        return None
    receipt.status = status
    receipt.updated_at = utc_now()
    session.add(receipt)
    session.commit()
    session.refresh(receipt)
    return receipt


def mark_refunded(
    *,
    session: Session,
    payment_intent_id: str,
    refund_amount: Decimal,
    reason: str | None = None,
    refunded_at: datetime | None = None,
) -> Receipt | None:
    """记录退款；同一笔支付多次部分退款时 refund_amount 取 Stripe 返回的累计值"""
    receipt = get_by_payment_intent(session=session, payment_intent_id=payment_intent_id)
    if receipt is None:
        return None
    receipt.refunded = True
    receipt.refund_amount = Decimal(refund_amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    receipt.refund_reason = reason or receipt.refund_reason
    receipt.refunded_at = refunded_at or utc_now()
    receipt.updated_at = utc_now()
    session.add(receipt)
    session.commit()
    session.refresh(receipt)
    return receipt


def list_receipts(
    *,
    session: Session,
    user_id: int | None = None,
    status: ReceiptStatus | None = None,
    refunded: bool | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Receipt], int]:
    """分页查询收据；user_id 为空时查询全部（管理后台）"""
    conditions = []
    if user_id is not None:
        conditions.append(Receipt.user_id == user_id)
    if status is not None:
        conditions.append(Receipt.status == status)
    if refunded is not None:
        conditions.append(Receipt.refunded == refunded)

    count = session.exec(select(func.count()).select_from(Receipt).where(*conditions)).one()
    items = session.exec(
        select(Receipt)
        .where(*conditions)
        .order_by(Receipt.created_at.desc())  # type: ignore[union-attr]
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(items), int(count)


def statistics(*, session: Session, user_id: int | None = None) -> dict[str, Any]:
    """
    收据统计

    只统计 succeeded 的收据；净收入 = 总收入 - 退款。
    user_id 为空时为平台统计。
    """
    conditions = [Receipt.status == ReceiptStatus.succeeded]
    if user_id is not None:
        conditions.append(Receipt.user_id == user_id)

    total_count, total_amount, refunded_amount = session.exec(
        select(
            func.count(),
            func.coalesce(func.sum(Receipt.amount), 0),
            func.coalesce(func.sum(Receipt.refund_amount), 0),
        )
        .select_from(Receipt)
        .where(*conditions)
    ).one()
    refund_count = session.exec(
        select(func.count())
        .select_from(Receipt)
        .where(*conditions, Receipt.refunded == True)  # noqa: E712
    ).one()

    total = Decimal(str(total_amount)).quantize(_CENT)
    refunded_total = Decimal(str(refunded_amount)).quantize(_CENT)
    return {
        "total_receipts": int(total_count),
        "total_amount": total,
        "refund_count": int(refund_count),
        "refunded_amount": refunded_total,
        "net_amount": total - refunded_total,
    }


def list_for_user(
    *,
    session: Session,
    user_id: int,
    status: ReceiptStatus | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Receipt], int]:
    return list_receipts(
        session=session, user_id=user_id, status=status, page=page, page_size=page_size
    )


def list_for_admin(
    *,
    session: Session,
    user_id: int | None = None,
    status: ReceiptStatus | None = None,
    refunded: bool | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Receipt], int]:
    return list_receipts(
        session=session,
        user_id=user_id,
        status=status,
        refunded=refunded,
        page=page,
        page_size=page_size,
    )


def user_statistics(*, session: Session, user_id: int) -> dict[str, Any]:
    return statistics(session=session, user_id=user_id)


def platform_statistics(*, session: Session) -> dict[str, Any]:
    stats = statistics(session=session)
    stats["unique_customers"] = int(
        session.exec(
            select(func.count(func.distinct(Receipt.user_id))).where(
                Receipt.status == ReceiptStatus.succeeded
            )
        ).one()
    )
    return stats
