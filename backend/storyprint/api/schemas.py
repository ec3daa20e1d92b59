"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- 请求模型（*Request）：校验客户端提交的数据
- 读模型（*Data）：接口返回的数据结构，与数据表模型分离，
  通过 from_attributes 从表模型构造，不直接返回数据表行
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Any  # 任意类型

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storyprint.enums import (
    GenderPreference,  # 孩子性别偏好
    OrderPaymentStatus,  # 印刷订单支付状态
    PaymentStatus,  # 支付记录状态
    PrintColor,  # 印刷颜色
    PrintOrderStatus,  # 印刷订单状态
    PrintQuality,  # 印刷质量
    ReceiptStatus,  # 收据状态
    ServiceCategory,  # 印刷服务类别
    ShippingLevel,  # 配送等级
)

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    所有 API 响应都使用这个格式，包含：
    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 402001, "message": "This book must be purchased before it can be printed", "data": None}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============================================================
# 个性化绘本
# ============================================================


class ChapterIn(BaseModel):
    """章节内容"""
    chapter_title: str = Field(default="", max_length=200)
    chapter_content: str = ""
    image_url: str | None = Field(default=None, max_length=1024)
    image_description: str | None = None
    image_position: str | None = Field(default=None, max_length=64)  # 如 "full scene"


class BookContentIn(BaseModel):
    book_title: str = Field(min_length=1, max_length=200)
    genre: str | None = Field(default=None, max_length=64)
    author: str | None = Field(default=None, max_length=128)
    cover_image: str | None = Field(default=None, max_length=1024)
    chapters: list[ChapterIn] = []


class PersonalizedBookCreateRequest(BaseModel):
    """
    保存个性化绘本请求模型

    模板定制完成后由前端提交，price 为模板售价。
    """
    original_template_id: str = Field(min_length=1, max_length=64)
    child_name: str = Field(min_length=1, max_length=64)
    child_age: int | None = Field(default=None, ge=0, le=18)
    gender_preference: GenderPreference | None = None
    dedication_message: str | None = Field(default=None, max_length=1000)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    personalized_content: BookContentIn


class PersonalizedBookData(_ReadModel):
    id: int
    original_template_id: str
    child_name: str
    child_age: int | None = None
    gender_preference: GenderPreference | None = None
    dedication_message: str | None = None
    price: Decimal
    is_paid: bool
    payment_date: datetime | None = None
    book_title: str  # 取自 personalized_content.book_title
    personalized_content: dict[str, Any]
    created_at: datetime


class PersonalizedBooksData(BaseModel):
    data: list[PersonalizedBookData]
    count: int


class PageBreakdownData(BaseModel):
    """绘本页数明细（与提交给 Lulu 的内页页数一致）"""
    title_pages: int
    dedication_pages: int
    chapter_count: int
    chapter_pages: int
    full_scene_extra_pages: int
    end_pages: int
    total_pages: int
    image_positions: dict[str, int]


class CheckoutData(BaseModel):
    """Stripe Checkout 创建结果"""
    checkout_url: str | None
    checkout_session_id: str
    amount: Decimal
    currency: str


# ============================================================
# 收据
# ============================================================


class ReceiptData(_ReadModel):
    id: int
    reference_code: str  # 收据编号
    personalized_book_id: int
    stripe_payment_intent_id: str
    amount: Decimal
    currency: str
    status: ReceiptStatus
    payment_method: str | None = None
    receipt_url: str | None = None
    receipt_number: str | None = None
    book_details: dict[str, Any] = {}
    user_details: dict[str, Any] = {}
    paid_at: datetime | None = None
    refunded: bool = False
    refund_amount: Decimal | None = None
    refund_reason: str | None = None
    refunded_at: datetime | None = None
    created_at: datetime


class ReceiptsData(BaseModel):
    data: list[ReceiptData]
    count: int


class ReceiptStatsData(BaseModel):
    total_receipts: int
    total_amount: Decimal
    refund_count: int
    refunded_amount: Decimal
    net_amount: Decimal
    unique_customers: int | None = None  # 只有平台统计返回


class RefundRequest(BaseModel):
    """
    管理员退款请求

    amount 为空时退还剩余全部金额。
    """
    amount: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    reason: str | None = Field(default=None, max_length=255)


class BookPaymentConfirmData(BaseModel):
    book: PersonalizedBookData
    receipt: ReceiptData
    already_processed: bool


# ============================================================
# 印刷服务
# ============================================================


class PrintServiceOptionCreateRequest(BaseModel):
    """
    新增印刷服务选项请求（管理员）

    pod_package_id 为 Lulu 的 27 位产品编码。
    """
    name: str = Field(min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=500)
    pod_package_id: str = Field(min_length=27, max_length=27)
    category: ServiceCategory
    trim_size: str = Field(min_length=1, max_length=32)
    color: PrintColor
    print_quality: PrintQuality
    binding: str = Field(min_length=1, max_length=64)
    paper_type: str = Field(min_length=1, max_length=64)
    paper_ppi: int = Field(default=444, gt=0)
    cover_finish: str = Field(min_length=1, max_length=32)
    base_price: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    is_active: bool = True
    min_pages: int = Field(default=2, ge=1)
    max_pages: int = Field(default=800, ge=1)
    estimated_production_days: int = Field(default=5, ge=0)

    @field_validator("pod_package_id")
    @classmethod
    def _upper_package(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def _page_range(self) -> "PrintServiceOptionCreateRequest":
        if self.min_pages > self.max_pages:
            raise ValueError("min_pages must not exceed max_pages")
        return self


class PrintServiceOptionData(_ReadModel):
    id: int
    name: str
    description: str | None = None
    pod_package_id: str
    category: ServiceCategory
    trim_size: str
    color: PrintColor
    print_quality: PrintQuality
    binding: str
    paper_type: str
    paper_ppi: int
    cover_finish: str
    base_price: Decimal
    is_active: bool
    min_pages: int
    max_pages: int
    estimated_production_days: int


class ShippingAddress(BaseModel):
    """收货地址（字段名与 Lulu 一致）"""
    name: str = Field(min_length=1, max_length=128)
    street1: str = Field(min_length=1, max_length=255)
    street2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=128)
    state_code: str | None = Field(default=None, max_length=16)
    country_code: str = Field(pattern=r"^[A-Za-z]{2}$")  # ISO 3166-1 两位代码
    postcode: str = Field(min_length=1, max_length=32)
    phone_number: str = Field(min_length=1, max_length=32)

    @field_validator("country_code")
    @classmethod
    def _upper_country(cls, v: str) -> str:
        return v.upper()


class PrintOrderCreateRequest(BaseModel):
    """
    创建印刷订单请求

    contact_email 为空时使用当前用户的邮箱。
    """
    personalized_book_id: int
    service_option_id: int
    quantity: int = Field(default=1, ge=1, le=1000)  # 印刷数量（1-1000）
    shipping_address: ShippingAddress
    shipping_level: ShippingLevel = ShippingLevel.GROUND
    contact_email: str | None = Field(default=None, max_length=255)
    production_delay: int = Field(default=60, ge=60, le=2880)  # 分钟


class PrintOrderData(_ReadModel):
    id: int
    personalized_book_id: int
    service_option_id: int
    lulu_print_job_id: str | None = None
    status: PrintOrderStatus
    payment_status: OrderPaymentStatus
    paid_amount: Decimal | None = None
    quantity: int
    shipping_address: dict[str, Any]
    shipping_level: ShippingLevel
    contact_email: str
    production_delay: int
    cost_breakdown: dict[str, Any] | None = None
    tracking_info: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class PrintOrdersData(BaseModel):
    data: list[PrintOrderData]
    count: int


class PrintOrderPaymentData(_ReadModel):
    id: int
    print_order_id: int
    checkout_session_id: str
    payment_intent_id: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: str | None = None
    receipt_url: str | None = None
    callback_processed: bool
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="extra_data")
    created_at: datetime


class BookSummary(BaseModel):
    title: str
    child_name: str
    page_count: int


class PrintOrderCreatedData(BaseModel):
    print_order: PrintOrderData
    cost_breakdown: dict[str, Any]
    service_option: PrintServiceOptionData
    book: BookSummary


class PrintOrderStatusData(BaseModel):
    print_order: PrintOrderData
    payment: PrintOrderPaymentData | None = None
    lulu_status: dict[str, Any] | None = None
    tracking_info: dict[str, Any] | None = None


class PaymentStatusData(BaseModel):
    print_order: PrintOrderData
    payment: PrintOrderPaymentData
    lulu_print_job: dict[str, Any] | None = None
    already_processed: bool
    payment_status: str | None = None
    session_status: str | None = None


class PendingSweepData(BaseModel):
    processed: int
    failed: int
    skipped: int = 0
    errors: list[dict[str, Any]] = []
