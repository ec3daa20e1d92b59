"""
个性化绘本模型模块

用户基于模板定制出的绘本实例。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlmodel import Field, SQLModel

from storyprint.enums import GenderPreference

from .base import id_field, timestamp_field


class PersonalizedBook(SQLModel, table=True):
    """
    个性化绘本模型

    字段说明：
    - original_template_id: 来源模板 ID
    - user_id: 所有者
    - child_name / child_age / gender_preference: 孩子信息
    - price: 绘本售价
    - is_paid: 是否已支付（只能经由支付确认从 false 变为 true 一次）
    - payment_id: Stripe PaymentIntent ID
    - payment_date: 支付时间
    - personalized_content: 定制内容（JSON），结构：
        {
          "book_title": str, "genre": str, "author": str, "cover_image": str,
          "chapters": [
            {"chapter_title": str, "chapter_content": str,
             "image_url": str, "image_description": str, "image_position": str}
          ]
        }
    - dedication_message: 献词（可选）
    """
    __tablename__ = "personalized_books"
    id: int = id_field()
    original_template_id: str = Field(max_length=64)
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    child_name: str = Field(max_length=64)
    child_age: int | None = Field(default=None)
    gender_preference: GenderPreference | None = Field(
        default=None, sa_column=Column(String(16), nullable=True)
    )
    dedication_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    is_paid: bool = Field(default=False)
    payment_id: str | None = Field(default=None, max_length=128)
    payment_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    personalized_content: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()

    @property
    def book_title(self) -> str:
        return str((self.personalized_content or {}).get("book_title") or "Untitled")

    @property
    def chapters(self) -> list[dict[str, Any]]:
        chapters = (self.personalized_content or {}).get("chapters") or []
        return [c for c in chapters if isinstance(c, dict)]
