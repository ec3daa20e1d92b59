"""
印刷订单支付记录模型模块
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from storyprint.enums import PaymentStatus

from .base import id_field, timestamp_field


class PrintOrderPayment(SQLModel, table=True):
    """
    印刷订单支付记录模型

    每次为印刷订单打开 Stripe Checkout 都会生成一条记录。
    callback_processed 是"回调已处理"标记：通过条件更新（CAS）从 false 置为 true，
    保证同一笔支付最多触发一次印刷任务提交。

    字段说明：
    - checkout_session_id: Stripe Checkout Session ID（唯一）
    - payment_intent_id: Stripe PaymentIntent ID（支付成功后回填）
    - status: 支付状态（pending/succeeded/failed/refunded）
    - callback_processed: 回调是否已处理
    - extra_data: 附加信息（数据库列名为 metadata），包含 Stripe metadata
      以及该绘本购买收据的参考码（receipt_reference_code）
    """
    __tablename__ = "print_order_payments"
    id: int = id_field()
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    print_order_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("print_orders.id"), index=True, nullable=False)
    )
    personalized_book_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("personalized_books.id"), nullable=False)
    )

    checkout_session_id: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False)
    )
    payment_intent_id: str | None = Field(
        default=None, sa_column=Column(String(255), index=True, nullable=True)
    )
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    currency: str = Field(default="usd", max_length=8)
    status: PaymentStatus = Field(
        default=PaymentStatus.pending, sa_column=Column(String(16), index=True, nullable=False)
    )
    payment_method: str | None = Field(default=None, max_length=64)
    receipt_url: str | None = Field(default=None, max_length=1024)
    callback_processed: bool = Field(default=False)
    extra_data: dict[str, Any] | None = Field(default=None, sa_column=Column("metadata", JSON))

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
