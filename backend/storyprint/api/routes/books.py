"""
个性化绘本路由模块

- 保存/查询个性化绘本
- 页数明细
- 绘本购买（Stripe Checkout）与支付确认
- 绘本购买收据
"""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Query

from storyprint import crud
from storyprint.api.deps import BookPaymentServiceDep, CurrentUser, SessionDep
from storyprint.api.errors import not_found
from storyprint.api.schemas import (
    ApiEnvelope,
    BookPaymentConfirmData,
    CheckoutData,
    PageBreakdownData,
    PersonalizedBookCreateRequest,
    PersonalizedBookData,
    PersonalizedBooksData,
    ReceiptData,
)
from storyprint.services.book_layout import page_breakdown

router = APIRouter(prefix="/books", tags=["books"])


@router.get("", response_model=ApiEnvelope)
def list_books(
    session: SessionDep,
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    """
    获取当前用户的个性化绘本（分页）

    请求路径: GET /api/v1/books?page=1&page_size=20
    """
    items, count = crud.books.list_for_user(
        session=session, user_id=current_user.id, page=page, page_size=page_size
    )
    data = [PersonalizedBookData.model_validate(b) for b in items]
    return ApiEnvelope(data=PersonalizedBooksData(data=data, count=count))


@router.post("", response_model=ApiEnvelope)
def create_book(
    session: SessionDep, current_user: CurrentUser, body: PersonalizedBookCreateRequest
) -> ApiEnvelope:
    """保存定制完成的绘本（未支付）"""
    book = crud.books.create(
        session=session,
        user_id=current_user.id,
        original_template_id=body.original_template_id,
        child_name=body.child_name,
        child_age=body.child_age,
        gender_preference=body.gender_preference,
        dedication_message=body.dedication_message,
        price=body.price,
        personalized_content=body.personalized_content.model_dump(),
    )
    return ApiEnvelope(data=PersonalizedBookData.model_validate(book))


@router.get("/payment/confirm", response_model=ApiEnvelope)
def confirm_book_payment(
    current_user: CurrentUser,
    service: BookPaymentServiceDep,
    session_id: str = Query(min_length=1),
) -> ApiEnvelope:
    """
    支付完成后的同步确认

    前端从 Stripe 跳回后调用；与 Webhook 并发时结果一致（收据按 PaymentIntent 合并）。

    请求路径: GET /api/v1/books/payment/confirm?session_id=cs_...
    """
    result = service.confirm_payment_with_session(session_id, current_user)
    return ApiEnvelope(
        data=BookPaymentConfirmData(
            book=PersonalizedBookData.model_validate(result["book"]),
            receipt=ReceiptData.model_validate(result["receipt"]),
            already_processed=result["already_processed"],
        )
    )


@router.get("/{book_id}", response_model=ApiEnvelope)
def get_book(session: SessionDep, current_user: CurrentUser, book_id: int) -> ApiEnvelope:
    book = crud.books.get_owned(session=session, book_id=book_id, user_id=current_user.id)
    if book is None:
        raise not_found("Personalized book")
    return ApiEnvelope(data=PersonalizedBookData.model_validate(book))


@router.get("/{book_id}/pages", response_model=ApiEnvelope)
def get_book_pages(session: SessionDep, current_user: CurrentUser, book_id: int) -> ApiEnvelope:
    """页数明细：标题页、献词页、章节页、整页插图额外页、结尾页"""
    book = crud.books.get_owned(session=session, book_id=book_id, user_id=current_user.id)
    if book is None:
        raise not_found("Personalized book")
    return ApiEnvelope(data=PageBreakdownData(**asdict(page_breakdown(book))))


@router.post("/{book_id}/checkout", response_model=ApiEnvelope)
def checkout_book(
    current_user: CurrentUser, service: BookPaymentServiceDep, book_id: int
) -> ApiEnvelope:
    """为绘本创建 Stripe Checkout"""
    result = service.initiate_payment(book_id, current_user)
    return ApiEnvelope(data=CheckoutData(**result))


@router.get("/{book_id}/receipt", response_model=ApiEnvelope)
def get_book_receipt(session: SessionDep, current_user: CurrentUser, book_id: int) -> ApiEnvelope:
    receipt = crud.receipts.get_for_book(session=session, book_id=book_id, user_id=current_user.id)
    if receipt is None:
        raise not_found("Receipt")
    return ApiEnvelope(data=ReceiptData.model_validate(receipt))
