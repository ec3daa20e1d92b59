"""
印刷订单模型模块

定义印刷服务选项（纸张、装订、尺寸组合）和印刷订单。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from storyprint.enums import (
    OrderPaymentStatus,
    PrintColor,
    PrintOrderStatus,
    PrintQuality,
    ServiceCategory,
    ShippingLevel,
)

from .base import id_field, timestamp_field


class PrintServiceOption(SQLModel, table=True):
    """
    印刷服务选项模型

    每个选项对应 Lulu 的一个 POD package id（27 位编码，包含尺寸、颜色、
    印刷质量、装订、纸张和封面工艺）。

    字段说明：
    - pod_package_id: Lulu 产品编码（唯一）
    - category: 类别（平装/精装/高级/线圈装）
    - base_price: 平台加价，在 Lulu 报价之上叠加
    - min_pages / max_pages: 该装订方式支持的页数范围（闭区间）
    - estimated_production_days: 预计生产天数（展示用）
    """
    __tablename__ = "print_service_options"
    id: int = id_field()
    name: str = Field(max_length=128)
    description: str | None = Field(default=None, max_length=500)
    pod_package_id: str = Field(
        sa_column=Column(String(27), unique=True, index=True, nullable=False)
    )
    category: ServiceCategory = Field(sa_column=Column(String(16), nullable=False))
    trim_size: str = Field(max_length=32)  # 如 "8.5x8.5"，单位英寸
    color: PrintColor = Field(sa_column=Column(String(8), nullable=False))
    print_quality: PrintQuality = Field(sa_column=Column(String(16), nullable=False))
    binding: str = Field(max_length=64)
    paper_type: str = Field(max_length=64)
    paper_ppi: int = Field(default=444)
    cover_finish: str = Field(max_length=32)

    base_price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    is_active: bool = Field(default=True)
    min_pages: int = Field(default=2)
    max_pages: int = Field(default=800)
    estimated_production_days: int = Field(default=5)

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()


class PrintOrder(SQLModel, table=True):
    """
    印刷订单模型

    一本已付款的个性化绘本对应的实体印刷订单。订单永不物理删除，取消只是状态流转。

    字段说明：
    - lulu_print_job_id: Lulu 印刷任务 ID（只有进入 created 状态后才有值）
    - status: 订单生命周期状态，见 PrintOrderStatus
    - payment_status: 订单支付状态（未付/已付/已退款）
    - payment_id: 支付成功的 Stripe PaymentIntent ID
    - paid_amount: 实付金额
    - quantity: 印刷数量（1-1000）
    - shipping_address: 收货地址（JSON），字段：
        name, street1, street2, city, state_code, country_code, postcode, phone_number
    - shipping_level: 配送等级
    - production_delay: 提交后等待多少分钟再开始生产（60-2880），期间可取消
    - cost_breakdown: 报价明细（JSON），包含 Lulu 报价和平台加价
    - tracking_info: 物流信息（JSON）：tracking_id, tracking_urls, carrier_name, shipped_at
    """
    __tablename__ = "print_orders"
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
    service_option_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("print_service_options.id"), nullable=False)
    )
    lulu_print_job_id: str | None = Field(
        default=None, sa_column=Column(String(64), index=True, nullable=True)
    )

    status: PrintOrderStatus = Field(
        default=PrintOrderStatus.draft, sa_column=Column(String(32), index=True, nullable=False)
    )
    payment_status: OrderPaymentStatus = Field(
        default=OrderPaymentStatus.unpaid, sa_column=Column(String(16), nullable=False)
    )
    payment_id: str | None = Field(default=None, max_length=128)
    paid_amount: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(10, 2), nullable=True)
    )

    quantity: int = Field(default=1)
    shipping_address: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    shipping_level: ShippingLevel = Field(
        default=ShippingLevel.GROUND, sa_column=Column(String(16), nullable=False)
    )
    contact_email: str = Field(max_length=255)
    external_id: str | None = Field(default=None, max_length=64)
    production_delay: int = Field(default=60)

    cost_breakdown: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    tracking_info: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
