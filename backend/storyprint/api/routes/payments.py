"""
支付回调路由模块

Stripe Webhook 入口。签名校验在任何业务逻辑之前完成，失败返回 400。
"""
from fastapi import APIRouter, Header

from storyprint.api.deps import BookPaymentServiceDep, GatewayDep, RawBody
from storyprint.api.schemas import ApiEnvelope

router = APIRouter(prefix="/payment", tags=["payment"])


@router.post("/webhooks/stripe", response_model=ApiEnvelope)
def stripe_webhook(
    payload: RawBody,
    gateway: GatewayDep,
    service: BookPaymentServiceDep,
    stripe_signature: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    Stripe Webhook

    请求路径: POST /api/v1/payment/webhooks/stripe
    请求头: Stripe-Signature

    同一事件重复投递时返回 duplicate=True，不会重复处理。
    """
    event = gateway.verify_webhook(payload, stripe_signature)
    result = service.handle_webhook_event(event)
    return ApiEnvelope(data={"received": True, **result})
