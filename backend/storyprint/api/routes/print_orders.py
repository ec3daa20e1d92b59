"""
印刷订单路由模块

处理印刷相关的 API 端点，包括：
- 印刷服务选项
- 创建印刷订单（含报价）、查询、取消、配送选项
- 印刷订单支付（Checkout、成功/取消跳转、支付状态查询）
- 管理接口：待处理支付扫描、状态同步、重新提交、取消、统计

支付成功/取消跳转由 Stripe 发起，处理完成后 302 跳转回前端页面。
"""
from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from storyprint import crud
from storyprint.api.deps import CurrentAdmin, CurrentUser, PrintOrderServiceDep, SessionDep
from storyprint.api.errors import AppError, ValidationFailed, not_found
from storyprint.api.schemas import (
    ApiEnvelope,
    BookSummary,
    CheckoutData,
    PaymentStatusData,
    PendingSweepData,
    PrintOrderCreatedData,
    PrintOrderCreateRequest,
    PrintOrderData,
    PrintOrderPaymentData,
    PrintOrdersData,
    PrintOrderStatusData,
    PrintServiceOptionCreateRequest,
    PrintServiceOptionData,
)
from storyprint.core.config import settings
from storyprint.enums import PrintOrderStatus

router = APIRouter(prefix="/print", tags=["print"])


def _frontend_redirect(path: str, **params: Any) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}{path}?{query}", status_code=302
    )


def _status_data(result: dict[str, Any]) -> PrintOrderStatusData:
    payment = result.get("payment")
    return PrintOrderStatusData(
        print_order=PrintOrderData.model_validate(result["print_order"]),
        payment=PrintOrderPaymentData.model_validate(payment) if payment is not None else None,
        lulu_status=result.get("lulu_status"),
        tracking_info=result.get("tracking_info"),
    )


# ============================================================
# 印刷服务选项
# ============================================================


@router.get("/services", response_model=ApiEnvelope)
def list_services(session: SessionDep) -> ApiEnvelope:
    """可用的印刷服务选项（按加价从低到高）"""
    options = crud.print_orders.list_service_options(session=session)
    return ApiEnvelope(data=[PrintServiceOptionData.model_validate(o) for o in options])


@router.get("/services/{option_id}", response_model=ApiEnvelope)
def get_service(session: SessionDep, option_id: int) -> ApiEnvelope:
    option = crud.print_orders.get_service_option(session=session, option_id=option_id)
    if option is None:
        raise not_found("Print service option")
    return ApiEnvelope(data=PrintServiceOptionData.model_validate(option))


@router.post("/services", response_model=ApiEnvelope)
def create_service(
    session: SessionDep, _: CurrentAdmin, body: PrintServiceOptionCreateRequest
) -> ApiEnvelope:
    if crud.print_orders.get_service_option_by_package(
        session=session, pod_package_id=body.pod_package_id
    ):
        raise ValidationFailed(message="A service option with this pod_package_id already exists")
    option = crud.print_orders.create_service_option(session=session, data=body.model_dump())
    return ApiEnvelope(data=PrintServiceOptionData.model_validate(option))


# ============================================================
# 印刷订单
# ============================================================


@router.post("/orders", response_model=ApiEnvelope)
def create_print_order(
    current_user: CurrentUser, service: PrintOrderServiceDep, body: PrintOrderCreateRequest
) -> ApiEnvelope:
    """
    创建印刷订单

    绘本必须已支付（否则 402），页数必须在服务选项支持的范围内。
    返回订单、报价明细、服务选项和绘本摘要。

    请求路径: POST /api/v1/print/orders
    """
    order_data = body.model_dump(mode="json")
    order_data["contact_email"] = body.contact_email or current_user.email
    result = service.create_print_order_with_cost(current_user.id, order_data)
    return ApiEnvelope(
        data=PrintOrderCreatedData(
            print_order=PrintOrderData.model_validate(result["print_order"]),
            cost_breakdown=result["cost_breakdown"],
            service_option=PrintServiceOptionData.model_validate(result["service_option"]),
            book=BookSummary(**result["book"]),
        )
    )


@router.get("/orders", response_model=ApiEnvelope)
def list_print_orders(
    current_user: CurrentUser,
    service: PrintOrderServiceDep,
    status: PrintOrderStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    result = service.list_user_orders(current_user.id, page=page, page_size=page_size, status=status)
    data = [PrintOrderData.model_validate(o) for o in result["items"]]
    return ApiEnvelope(data=PrintOrdersData(data=data, count=result["total"]))


@router.get("/orders/{order_id}", response_model=ApiEnvelope)
def get_print_order(
    current_user: CurrentUser, service: PrintOrderServiceDep, order_id: int
) -> ApiEnvelope:
    """订单详情（有 Lulu 任务时顺带同步状态和物流信息）"""
    result = service.get_print_order_status(order_id, current_user.id)
    return ApiEnvelope(data=_status_data(result))


@router.post("/orders/{order_id}/checkout", response_model=ApiEnvelope)
def checkout_print_order(
    current_user: CurrentUser, service: PrintOrderServiceDep, order_id: int
) -> ApiEnvelope:
    result = service.create_print_order_checkout(order_id, current_user.id)
    return ApiEnvelope(
        data=CheckoutData(
            checkout_url=result["checkout_url"],
            checkout_session_id=result["checkout_session_id"],
            amount=result["amount"],
            currency=result["currency"],
        )
    )


@router.patch("/orders/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_print_order(
    current_user: CurrentUser, service: PrintOrderServiceDep, order_id: int
) -> ApiEnvelope:
    order = service.cancel_print_order(order_id, current_user.id)
    return ApiEnvelope(data=PrintOrderData.model_validate(order))


@router.get("/orders/{order_id}/shipping-options", response_model=ApiEnvelope)
def shipping_options(
    current_user: CurrentUser, service: PrintOrderServiceDep, order_id: int
) -> ApiEnvelope:
    return ApiEnvelope(data=service.get_shipping_options(order_id, current_user.id))


# ============================================================
# 支付
# ============================================================


@router.get("/payment/success")
def payment_success(
    service: PrintOrderServiceDep, session_id: str = Query(min_length=1)
) -> RedirectResponse:
    """
    Stripe 支付成功跳转

    请求路径: GET /api/v1/print/payment/success?session_id=cs_...
    成功跳转 /print-order/success，失败跳转 /print-order/error（携带错误信息）。
    """
    try:
        result = service.handle_payment_success_callback(session_id)
    except AppError as e:
        return _frontend_redirect("/print-order/error", session_id=session_id, error=e.message)
    return _frontend_redirect(
        "/print-order/success",
        order_id=result["print_order"].id,
        session_id=session_id,
        processed=str(result["already_processed"]).lower(),
    )


@router.get("/payment/cancel")
def payment_cancel(
    service: PrintOrderServiceDep, session_id: str = Query(min_length=1)
) -> RedirectResponse:
    try:
        result = service.handle_payment_cancel_callback(session_id)
    except AppError as e:
        return _frontend_redirect("/print-order/error", session_id=session_id, error=e.message)
    return _frontend_redirect(
        "/print-order/cancel", order_id=result["print_order"].id, session_id=session_id
    )


@router.get("/payment/status", response_model=ApiEnvelope)
def payment_status(
    current_user: CurrentUser,
    service: PrintOrderServiceDep,
    session_id: str = Query(min_length=1),
) -> ApiEnvelope:
    """查询支付结果；已付款但尚未处理时会完成处理并提交印刷任务"""
    result = service.check_payment_status(session_id, current_user.id)
    return ApiEnvelope(
        data=PaymentStatusData(
            print_order=PrintOrderData.model_validate(result["print_order"]),
            payment=PrintOrderPaymentData.model_validate(result["payment"]),
            lulu_print_job=result.get("lulu_print_job"),
            already_processed=result["already_processed"],
            payment_status=result.get("payment_status"),
            session_status=result.get("session_status"),
        )
    )


# ============================================================
# 管理接口
# ============================================================


@router.post("/admin/process-pending-payments", response_model=ApiEnvelope)
def process_pending_payments(_: CurrentAdmin, service: PrintOrderServiceDep) -> ApiEnvelope:
    """
    手动扫描 24 小时内未处理的支付

    管理员触发时会重新提交已处于 error 状态（且没有 Lulu 任务）的订单。
    """
    result = service.process_pending_payments(retry_errored=True)
    return ApiEnvelope(data=PendingSweepData(**result))


@router.post("/admin/orders/{order_id}/sync", response_model=ApiEnvelope)
def sync_order(_: CurrentAdmin, service: PrintOrderServiceDep, order_id: int) -> ApiEnvelope:
    return ApiEnvelope(data=_status_data(service.sync_order_status(order_id)))


@router.post("/admin/orders/{order_id}/resubmit", response_model=ApiEnvelope)
def resubmit_order(_: CurrentAdmin, service: PrintOrderServiceDep, order_id: int) -> ApiEnvelope:
    result = service.resubmit_print_order(order_id)
    return ApiEnvelope(
        data={
            "print_order": PrintOrderData.model_validate(result["print_order"]),
            "lulu_print_job": result["lulu_print_job"],
        }
    )


@router.patch("/admin/orders/{order_id}/cancel", response_model=ApiEnvelope)
def admin_cancel_order(_: CurrentAdmin, service: PrintOrderServiceDep, order_id: int) -> ApiEnvelope:
    order = service.cancel_print_order(order_id)
    return ApiEnvelope(data=PrintOrderData.model_validate(order))


@router.get("/admin/stats", response_model=ApiEnvelope)
def admin_stats(_: CurrentAdmin, service: PrintOrderServiceDep) -> ApiEnvelope:
    return ApiEnvelope(data=service.order_statistics())
