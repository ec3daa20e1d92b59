"""
收据模型模块

收据是绘本购买（不是印刷订单）成功付款的持久凭证，也是营收统计和用户收据页面的数据来源。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import field_validator
from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from storyprint.enums import ReceiptStatus

from .base import id_field, timestamp_field


class Receipt(SQLModel, table=True):
    """
    收据模型

    stripe_payment_intent_id 全局唯一：Webhook 和同步确认接口可能同时为同一笔支付创建收据，
    重复创建会变成更新已有记录（见 crud.receipts.create）。
    reference_code 一旦生成不可修改。

    字段说明：
    - reference_code: 展示给用户的收据编号（唯一）
    - stripe_payment_intent_id / stripe_customer_id / stripe_charge_id: Stripe 关联 ID
    - amount / currency: 金额和币种（币种统一大写）
    - status: 与 PaymentIntent 状态一致
    - book_details: 绘本快照（book_title, child_name, child_age, genre, author）
    - user_details: 用户快照（email, name, username）
    - extra_data: 附加信息（数据库列名为 metadata）
    - refunded / refund_amount / refund_reason / refunded_at: 退款信息
    """
    __tablename__ = "receipts"
    id: int = id_field()
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    personalized_book_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("personalized_books.id"), index=True, nullable=False
        )
    )
    reference_code: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False)
    )
    stripe_payment_intent_id: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False)
    )
    stripe_customer_id: str | None = Field(default=None, max_length=255)
    stripe_charge_id: str | None = Field(default=None, max_length=255)

    amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    currency: str = Field(default="USD", max_length=8)
    status: ReceiptStatus = Field(
        default=ReceiptStatus.pending, sa_column=Column(String(32), index=True, nullable=False)
    )
    payment_method: str | None = Field(default=None, max_length=64)
    receipt_url: str | None = Field(default=None, max_length=1024)
    receipt_number: str | None = Field(default=None, max_length=64)

    book_details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    user_details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    extra_data: dict[str, Any] | None = Field(default=None, sa_column=Column("metadata", JSON))

    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    refunded: bool = Field(default=False)
    refund_amount: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(10, 2), nullable=True)
    )
    refund_reason: str | None = Field(default=None, max_length=255)
    refunded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()


class ReceiptCreate(SQLModel):
    """
    创建收据的输入模型（非数据表）

    crud.receipts.create 用它做校验；reference_code 由系统生成，不接受外部传入。
    """
    user_id: int
    personalized_book_id: int
    stripe_payment_intent_id: str = Field(min_length=1, max_length=255)
    stripe_customer_id: str | None = None
    stripe_charge_id: str | None = None
    amount: Decimal = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: ReceiptStatus = ReceiptStatus.succeeded
    payment_method: str | None = None
    receipt_url: str | None = None
    receipt_number: str | None = None
    book_details: dict[str, Any] | None = None
    user_details: dict[str, Any] | None = None
    extra_data: dict[str, Any] | None = None
    paid_at: datetime | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()
