"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接当字符串存库，又具有枚举的类型约束。
印刷订单状态机（允许的状态流转）也定义在这里。
"""
from enum import Enum


class GenderPreference(str, Enum):
    male = "male"
    female = "female"
    neutral = "neutral"


class ImagePosition(str, Enum):
    """
    章节插图版式

    取值与前端模板编辑器保存的字符串一致（注意包含空格）。
    未知或缺失的版式统一按 standard 处理。
    """
    full_scene = "full scene"
    character_focus = "character focus"
    action_spotlight = "action spotlight"
    top_third = "top third"
    bottom_third = "bottom third"
    left_panel = "left panel"
    right_panel = "right panel"
    background_layered = "background layered"
    text_wrap = "text wrap"
    circular_frame = "circular frame"
    side_bar = "side bar"
    corner_accent = "corner accent"
    header_banner = "header banner"
    footer_illustration = "footer illustration"
    comic_strips = "comic strips"
    split_screens = "split screens"
    standard = "standard"

    @classmethod
    def parse(cls, value: str | None) -> "ImagePosition":
        """按原字符串精确匹配（区分大小写、不去空格），匹配不上的一律按 standard"""
        if not value:
            return cls.standard
        try:
            return cls(value)
        except ValueError:
            return cls.standard


class ServiceCategory(str, Enum):
    paperback = "paperback"
    hardcover = "hardcover"
    premium = "premium"
    coil_bound = "coil_bound"


class PrintColor(str, Enum):
    """bw: 黑白，fc: 全彩"""
    bw = "bw"
    fc = "fc"


class PrintQuality(str, Enum):
    standard = "standard"
    premium = "premium"


class ShippingLevel(str, Enum):
    """
    配送等级

    取值直接对应 Lulu 的 shipping_level / shipping_option。
    """
    MAIL = "MAIL"
    PRIORITY_MAIL = "PRIORITY_MAIL"
    GROUND = "GROUND"
    EXPEDITED = "EXPEDITED"
    EXPRESS = "EXPRESS"


class PrintOrderStatus(str, Enum):
    """
    印刷订单状态

    正常流转：
        draft → created → (unpaid | payment_in_progress)
              → (production_delayed | production_ready) → in_production → shipped

    - created 只有在拿到 Lulu 印刷任务 ID 之后才能进入
    - in_production 在印刷任务提交成功之后进入
    - shipped 只有在 Lulu 返回 SHIPPED 且带物流信息时才设置
    - rejected / canceled / error 是失败终态，shipped 是成功终态
    """
    draft = "draft"
    created = "created"
    unpaid = "unpaid"
    payment_in_progress = "payment_in_progress"
    production_delayed = "production_delayed"
    production_ready = "production_ready"
    in_production = "in_production"
    shipped = "shipped"
    rejected = "rejected"
    canceled = "canceled"
    error = "error"


class OrderPaymentStatus(str, Enum):
    """印刷订单本身的支付状态"""
    unpaid = "unpaid"
    paid = "paid"
    refunded = "refunded"


class PaymentStatus(str, Enum):
    """
    印刷订单支付记录状态

    - pending: 已创建 Checkout Session，等待支付
    - succeeded: 支付成功（且回调已处理）
    - failed: 取消、过期或支付失败
    - refunded: 已退款
    """
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    refunded = "refunded"


class ReceiptStatus(str, Enum):
    """收据状态，与 Stripe PaymentIntent 的生命周期一致"""
    pending = "pending"
    processing = "processing"
    requires_payment_method = "requires_payment_method"
    requires_confirmation = "requires_confirmation"
    requires_action = "requires_action"
    succeeded = "succeeded"
    canceled = "canceled"
    failed = "failed"


_FAILURE_STATES = {PrintOrderStatus.rejected, PrintOrderStatus.canceled, PrintOrderStatus.error}

TERMINAL_STATES = frozenset(_FAILURE_STATES | {PrintOrderStatus.shipped})

# 允许的前向流转；失败终态可以从任意非终态进入，单独处理
_FORWARD: dict[PrintOrderStatus, set[PrintOrderStatus]] = {
    PrintOrderStatus.draft: {
        PrintOrderStatus.created,
    },
    PrintOrderStatus.created: {
        PrintOrderStatus.unpaid,
        PrintOrderStatus.payment_in_progress,
        PrintOrderStatus.production_delayed,
        PrintOrderStatus.production_ready,
        PrintOrderStatus.in_production,
    },
    PrintOrderStatus.unpaid: {
        PrintOrderStatus.payment_in_progress,
        PrintOrderStatus.production_delayed,
        PrintOrderStatus.production_ready,
        PrintOrderStatus.in_production,
    },
    PrintOrderStatus.payment_in_progress: {
        PrintOrderStatus.production_delayed,
        PrintOrderStatus.production_ready,
        PrintOrderStatus.in_production,
    },
    PrintOrderStatus.production_delayed: {
        PrintOrderStatus.production_ready,
        PrintOrderStatus.in_production,
    },
    PrintOrderStatus.production_ready: {
        PrintOrderStatus.in_production,
    },
    PrintOrderStatus.in_production: {
        PrintOrderStatus.shipped,
    },
}

# 用户/管理员可以主动取消的状态（还没进入生产）
CANCELABLE_STATES = frozenset(
    {PrintOrderStatus.draft, PrintOrderStatus.created, PrintOrderStatus.unpaid}
)


def can_transition(current: PrintOrderStatus, new: PrintOrderStatus) -> bool:
    """判断订单状态能否从 current 流转到 new（终态不可离开）"""
    current, new = PrintOrderStatus(current), PrintOrderStatus(new)
    if current in TERMINAL_STATES:
        return False
    if new in _FAILURE_STATES:
        return True
    return new in _FORWARD.get(current, set())
