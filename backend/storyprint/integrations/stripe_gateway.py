"""
Stripe 支付网关适配模块

封装 Stripe Checkout / PaymentIntent / Refund / Webhook 的调用：
- 金额在边界上一律使用主币种单位（美元），内部转换为最小单位（美分）
- 低于 $0.50 的金额直接拒绝（Stripe 最低收款金额）
- Stripe SDK 的错误转换成用户可读的提示，原始错误只写日志

适配器本身不保存任何状态，每个方法就是一次 Stripe API 往返。
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Any

import stripe

from storyprint.api.errors import (
    InvalidSignature,
    NotFound,
    PaymentGatewayError,
    ValidationFailed,
)
from storyprint.core.config import settings

logger = logging.getLogger(__name__)

_MAX_AMOUNT_CENTS = 99_999_999


@dataclass(frozen=True)
class CheckoutSession:
    """新建的 Checkout Session"""
    id: str
    url: str | None


@dataclass(frozen=True)
class PaymentIntentInfo:
    id: str
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    customer: str | None = None
    latest_charge: str | None = None
    payment_method: str | None = None
    receipt_url: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSessionState:
    """查询到的 Checkout Session 状态"""
    id: str
    status: str | None
    payment_status: str | None
    amount_total: Decimal | None
    currency: str | None
    customer_email: str | None = None
    payment_intent: PaymentIntentInfo | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    created: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass(frozen=True)
class ChargeReceipt:
    """从 PaymentIntent 最近一次扣款中取出的收据信息"""
    charge_id: str | None
    receipt_url: str | None
    receipt_number: str | None
    payment_method_type: str | None
    customer_id: str | None
    paid_at: datetime | None


@dataclass(frozen=True)
class RefundResult:
    id: str
    amount: Decimal
    currency: str
    status: str
    reason: str | None
    created: datetime | None


def to_cents(amount: Decimal | float | int | str) -> int:
    """主币种金额转最小单位（四舍五入）"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def _ts(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _id_of(value: Any) -> str | None:
    """Stripe 字段可能是 ID 字符串，也可能是展开后的对象"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def _plain_metadata(value: Any) -> dict[str, str]:
    if not value:
        return {}
    return {str(k): str(v) for k, v in dict(value).items()}


def user_safe_message(exc: stripe.StripeError) -> str:
    """把 Stripe 异常转换成可以返回给用户的提示"""
    if isinstance(exc, stripe.CardError):
        return exc.user_message or "Your card was declined."
    if isinstance(exc, stripe.RateLimitError):
        return "Too many requests made to the payment processor. Please try again later."
    if isinstance(exc, stripe.InvalidRequestError):
        return "Invalid payment request."
    if isinstance(exc, stripe.AuthenticationError):
        return "Payment service is temporarily unavailable."
    if isinstance(exc, stripe.APIConnectionError):
        return "Network error while contacting the payment processor. Please try again."
    if isinstance(exc, stripe.APIError):
        return "Payment processor error. Please try again later."
    return "Payment processing failed."


def _gateway_error(action: str, exc: stripe.StripeError) -> PaymentGatewayError:
    logger.error("Stripe %s failed: %s", action, exc)
    status_code = 503 if isinstance(exc, (stripe.APIConnectionError, stripe.APIError)) else 400
    return PaymentGatewayError(message=user_safe_message(exc), status_code=status_code)


class StripeGateway:
    """
    Stripe 网关客户端

    api_key（以及可选的 api_version）通过每次调用传给 SDK，不修改全局 stripe.api_key，方便测试中替换。
    """

    def __init__(
        self,
        *,
        api_key: str,
        webhook_secret: str | None = None,
        currency: str = "usd",
        min_amount: Decimal = Decimal("0.50"),
        api_version: str | None = None,
    ) -> None:
        self._request_options: dict[str, Any] = {"api_key": api_key}
        if api_version:
            self._request_options["stripe_version"] = api_version
        self._webhook_secret = webhook_secret
        self._currency = currency.lower()
        self._min_cents = to_cents(min_amount)

    @property
    def currency(self) -> str:
        return self._currency

    def _checked_cents(self, amount: Decimal | float | int | str) -> int:
        try:
            cents = to_cents(amount)
        except ArithmeticError:
            raise ValidationFailed(message="Invalid payment amount")
        if cents < self._min_cents:
            raise ValidationFailed(
                message=f"Amount must be at least ${from_cents(self._min_cents)}"
            )
        if cents > _MAX_AMOUNT_CENTS:
            raise ValidationFailed(message="Amount exceeds the maximum allowed")
        return cents

    def create_checkout_session(
        self,
        *,
        amount: Decimal,
        metadata: dict[str, Any],
        customer: dict[str, Any] | None,
        success_url: str,
        cancel_url: str,
        product_name: str = "Personalized book",
        description: str | None = None,
        currency: str | None = None,
    ) -> CheckoutSession:
        """
        创建 Checkout Session

        Args:
            amount: 金额（主币种单位）
            metadata: 附加到 Session 和 PaymentIntent 上的元数据（值会转成字符串）
            customer: 客户信息，目前只使用 email
            success_url / cancel_url: 支付完成/取消后的跳转地址

        Raises:
            ValidationFailed: 金额低于最低限额或超过上限
            PaymentGatewayError: Stripe 调用失败
        """
        cents = self._checked_cents(amount)
        meta = {"service": "personalized_book", **_plain_metadata(metadata)}
        product: dict[str, Any] = {"name": product_name}
        if description:
            product["description"] = description

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": (currency or self._currency).lower(),
                        "product_data": product,
                        "unit_amount": cents,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": meta,
            "payment_intent_data": {"metadata": meta},
        }
        email = (customer or {}).get("email")
        if email:
            params["customer_email"] = email

        try:
            session = stripe.checkout.Session.create(**self._request_options, **params)
        except stripe.StripeError as e:
            raise _gateway_error("create checkout session", e)

        logger.info("Created checkout session %s for %s cents", session["id"], cents)
        return CheckoutSession(id=session["id"], url=session.get("url"))

    def get_checkout_session(self, session_id: str) -> CheckoutSessionState:
        """
        查询 Checkout Session（展开 PaymentIntent 和最近一次扣款）

        Raises:
            NotFound: Session 不存在
            PaymentGatewayError: 其它 Stripe 错误
        """
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                **self._request_options,
                expand=["payment_intent", "payment_intent.latest_charge"],
            )
        except stripe.InvalidRequestError as e:
            if getattr(e, "http_status", None) == 404:
                logger.warning("Checkout session %s not found: %s", session_id, e)
                raise NotFound(message="Checkout session not found")
            raise _gateway_error("retrieve checkout session", e)
        except stripe.StripeError as e:
            raise _gateway_error("retrieve checkout session", e)

        intent = session.get("payment_intent")
        intent_info = None
        if isinstance(intent, str):
            intent_info = PaymentIntentInfo(id=intent)
        elif intent:
            intent_info = self._intent_info(intent)

        return CheckoutSessionState(
            id=session["id"],
            status=session.get("status"),
            payment_status=session.get("payment_status"),
            amount_total=from_cents(session.get("amount_total")),
            currency=session.get("currency"),
            customer_email=session.get("customer_email")
            or (session.get("customer_details") or {}).get("email"),
            payment_intent=intent_info,
            metadata=_plain_metadata(session.get("metadata")),
            url=session.get("url"),
            created=_ts(session.get("created")),
        )

    @staticmethod
    def _intent_info(intent: Any) -> PaymentIntentInfo:
        charge = intent.get("latest_charge")
        receipt_url = None
        if charge is not None and not isinstance(charge, str):
            receipt_url = charge.get("receipt_url")
        return PaymentIntentInfo(
            id=intent["id"],
            status=intent.get("status"),
            amount=from_cents(intent.get("amount")),
            currency=intent.get("currency"),
            customer=_id_of(intent.get("customer")),
            latest_charge=_id_of(charge),
            payment_method=_id_of(intent.get("payment_method")),
            receipt_url=receipt_url,
            metadata=_plain_metadata(intent.get("metadata")),
        )

    def get_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id, **self._request_options, expand=["latest_charge"]
            )
        except stripe.StripeError as e:
            raise _gateway_error("retrieve payment intent", e)
        return self._intent_info(intent)

    def get_receipt(self, payment_intent_id: str) -> ChargeReceipt:
        """查询 PaymentIntent 最近一次扣款的收据信息（收据地址、收据编号、支付方式）"""
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id, **self._request_options, expand=["latest_charge"]
            )
        except stripe.StripeError as e:
            raise _gateway_error("retrieve receipt", e)

        charge = intent.get("latest_charge")
        if not charge or isinstance(charge, str):
            return ChargeReceipt(
                charge_id=charge if isinstance(charge, str) else None,
                receipt_url=None,
                receipt_number=None,
                payment_method_type=None,
                customer_id=_id_of(intent.get("customer")),
                paid_at=None,
            )
        details = charge.get("payment_method_details") or {}
        return ChargeReceipt(
            charge_id=charge.get("id"),
            receipt_url=charge.get("receipt_url"),
            receipt_number=charge.get("receipt_number"),
            payment_method_type=details.get("type"),
            customer_id=_id_of(charge.get("customer") or intent.get("customer")),
            paid_at=_ts(charge.get("created")),
        )

    def verify_webhook(
        self, payload: bytes, signature: str | None, secret: str | None = None
    ) -> dict[str, Any]:
        """
        校验 Webhook 签名并解析事件

        Returns:
            事件内容（普通 dict）

        Raises:
            InvalidSignature: 缺少签名头、签名不匹配或载荷不是合法 JSON
        """
        secret = secret or self._webhook_secret
        if not signature or not secret:
            raise InvalidSignature(message="Missing webhook signature")
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed: %s", e)
            raise InvalidSignature(message="Invalid webhook signature")
        except ValueError as e:
            logger.warning("Stripe webhook payload is not valid JSON: %s", e)
            raise InvalidSignature(message="Invalid webhook payload")
        return json.loads(payload)

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal | None = None,
        reason: str = "requested_by_customer",
    ) -> RefundResult:
        """
        退款

        Args:
            payment_intent_id: 要退款的 PaymentIntent
            amount: 退款金额（主币种单位），为空时全额退款
            reason: Stripe 退款原因（duplicate / fraudulent / requested_by_customer）
        """
        params: dict[str, Any] = {"payment_intent": payment_intent_id, "reason": reason}
        if amount is not None:
            params["amount"] = to_cents(amount)
        try:
            refund = stripe.Refund.create(**self._request_options, **params)
        except stripe.StripeError as e:
            raise _gateway_error("create refund", e)

        logger.info("Created refund %s for payment intent %s", refund["id"], payment_intent_id)
        return RefundResult(
            id=refund["id"],
            amount=from_cents(refund.get("amount")) or Decimal("0.00"),
            currency=refund.get("currency") or self._currency,
            status=refund.get("status") or "pending",
            reason=refund.get("reason"),
            created=_ts(refund.get("created")),
        )

    @staticmethod
    def validate_payment_amount(paid: Decimal | None, expected: Decimal) -> bool:
        """按美分比较实付金额和应付金额"""
        if paid is None:
            return False
        return to_cents(paid) == to_cents(expected)


@lru_cache(maxsize=1)
def get_stripe_gateway() -> StripeGateway:
    """按配置构造的网关实例（进程内复用）"""
    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        currency=settings.STRIPE_CURRENCY,
        min_amount=settings.STRIPE_MIN_AMOUNT,
        api_version=settings.STRIPE_API_VERSION,
    )
