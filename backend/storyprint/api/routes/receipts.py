"""
收据路由模块

用户查询自己的绘本购买收据；管理员查询全部收据、平台统计和退款。
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from storyprint import crud
from storyprint.api.deps import BookPaymentServiceDep, CurrentAdmin, CurrentUser, SessionDep
from storyprint.api.errors import not_found
from storyprint.api.schemas import ApiEnvelope, ReceiptData, ReceiptsData, ReceiptStatsData, RefundRequest
from storyprint.enums import ReceiptStatus

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.get("", response_model=ApiEnvelope)
def list_receipts(
    session: SessionDep,
    current_user: CurrentUser,
    status: ReceiptStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    items, count = crud.receipts.list_for_user(
        session=session, user_id=current_user.id, status=status, page=page, page_size=page_size
    )
    data = [ReceiptData.model_validate(r) for r in items]
    return ApiEnvelope(data=ReceiptsData(data=data, count=count))


@router.get("/stats", response_model=ApiEnvelope)
def receipt_stats(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    stats = crud.receipts.user_statistics(session=session, user_id=current_user.id)
    return ApiEnvelope(data=ReceiptStatsData(**stats))


@router.get("/admin/all", response_model=ApiEnvelope)
def admin_list_receipts(
    session: SessionDep,
    _: CurrentAdmin,
    user_id: int | None = None,
    status: ReceiptStatus | None = None,
    refunded: bool | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> ApiEnvelope:
    items, count = crud.receipts.list_for_admin(
        session=session,
        user_id=user_id,
        status=status,
        refunded=refunded,
        page=page,
        page_size=page_size,
    )
    data = [ReceiptData.model_validate(r) for r in items]
    return ApiEnvelope(data=ReceiptsData(data=data, count=count))


@router.get("/admin/stats", response_model=ApiEnvelope)
def admin_receipt_stats(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    stats = crud.receipts.platform_statistics(session=session)
    return ApiEnvelope(data=ReceiptStatsData(**stats))


@router.post("/admin/{reference_code}/refund", response_model=ApiEnvelope)
def admin_refund_receipt(
    _: CurrentAdmin,
    service: BookPaymentServiceDep,
    reference_code: str,
    body: RefundRequest,
) -> ApiEnvelope:
    """
    管理员退款

    请求路径: POST /api/v1/receipts/admin/{reference_code}/refund
    """
    result = service.refund_receipt(reference_code, amount=body.amount, reason=body.reason)
    refund = result["refund"]
    return ApiEnvelope(
        data={
            "receipt": ReceiptData.model_validate(result["receipt"]),
            "refund": {
                "id": refund.id,
                "amount": refund.amount,
                "currency": refund.currency,
                "status": refund.status,
                "reason": refund.reason,
            },
        }
    )


@router.get("/{reference_code}", response_model=ApiEnvelope)
def get_receipt(session: SessionDep, current_user: CurrentUser, reference_code: str) -> ApiEnvelope:
    receipt = crud.receipts.get_by_reference_code(session=session, reference_code=reference_code)
    if receipt is None or receipt.user_id != current_user.id:
        raise not_found("Receipt")
    return ApiEnvelope(data=ReceiptData.model_validate(receipt))
