"""个性化绘本 CRUD 操作"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlmodel import Session, select

from storyprint.enums import GenderPreference
from storyprint.models import PersonalizedBook, utc_now


def create(
    *,
    session: Session,
    user_id: int,
    original_template_id: str,
    child_name: str,
    personalized_content: dict[str, Any],
    price: Decimal,
    child_age: int | None = None,
    gender_preference: GenderPreference | None = None,
    dedication_message: str | None = None,
) -> PersonalizedBook:
    book = PersonalizedBook(
        user_id=user_id,
        original_template_id=original_template_id,
        child_name=child_name,
        child_age=child_age,
        gender_preference=gender_preference,
        dedication_message=dedication_message,
        personalized_content=personalized_content,
        price=price,
    )
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


def get(*, session: Session, book_id: int) -> PersonalizedBook | None:
    return session.get(PersonalizedBook, book_id)


def get_owned(*, session: Session, book_id: int, user_id: int) -> PersonalizedBook | None:
    """查询属于指定用户的绘本，不属于该用户时视为不存在"""
    book = session.get(PersonalizedBook, book_id)
    if book is None or book.user_id != user_id:
        return None
    return book


def list_for_user(
    *, session: Session, user_id: int, page: int = 1, page_size: int = 20
) -> tuple[list[PersonalizedBook], int]:
    base = select(PersonalizedBook).where(PersonalizedBook.user_id == user_id)
    count = session.exec(
        select(func.count()).select_from(PersonalizedBook).where(PersonalizedBook.user_id == user_id)
    ).one()
    items = session.exec(
        base.order_by(PersonalizedBook.created_at.desc())  # type: ignore[union-attr]
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(items), int(count)


def mark_paid(
    *,
    session: Session,
    book_id: int,
    payment_id: str,
    paid_at: datetime | None = None,
) -> bool:
    """
    标记绘本已支付

    条件更新（is_paid = false 才更新），保证 is_paid 只会从 false 变为 true 一次。
    Webhook 和同步确认并发时只有一方返回 True。

    Returns:
        本次调用是否真正完成了标记
    """
    now = utc_now()
    result = session.exec(  # type: ignore[call-overload]
        update(PersonalizedBook)
        .where(PersonalizedBook.id == book_id, PersonalizedBook.is_paid == False)  # noqa: E712
        .values(
            is_paid=True,
            payment_id=payment_id,
            payment_date=paid_at or now,
            updated_at=now,
        )
    )
    session.commit()
    return result.rowcount == 1
