"""印刷服务选项和印刷订单 CRUD 操作"""
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlmodel import Session, select

from storyprint.enums import OrderPaymentStatus, PrintOrderStatus
from storyprint.models import PrintOrder, PrintServiceOption, utc_now


def list_service_options(*, session: Session, active_only: bool = True) -> list[PrintServiceOption]:
    stmt = select(PrintServiceOption)
    if active_only:
        stmt = stmt.where(PrintServiceOption.is_active == True)  # noqa: E712
    return list(session.exec(stmt.order_by(PrintServiceOption.base_price)).all())


def get_service_option(*, session: Session, option_id: int) -> PrintServiceOption | None:
    return session.get(PrintServiceOption, option_id)


def get_service_option_by_package(*, session: Session, pod_package_id: str) -> PrintServiceOption | None:
    return session.exec(
        select(PrintServiceOption).where(PrintServiceOption.pod_package_id == pod_package_id)
    ).first()


def create_service_option(*, session: Session, data: dict[str, Any]) -> PrintServiceOption:
    option = PrintServiceOption(**data)
    session.add(option)
    session.commit()
    session.refresh(option)
    return option


def get(*, session: Session, order_id: int) -> PrintOrder | None:
    return session.get(PrintOrder, order_id)


def list_orders(
    *,
    session: Session,
    user_id: int | None = None,
    status: PrintOrderStatus | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[PrintOrder], int]:
    """分页查询印刷订单；user_id 为空时查询全部（管理后台）"""
    conditions = []
    if user_id is not None:
        conditions.append(PrintOrder.user_id == user_id)
    if status is not None:
        conditions.append(PrintOrder.status == status)

    count = session.exec(select(func.count()).select_from(PrintOrder).where(*conditions)).one()
    items = session.exec(
        select(PrintOrder)
        .where(*conditions)
        .order_by(PrintOrder.created_at.desc())  # type: ignore[union-attr]
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(items), int(count)


def touch(order: PrintOrder) -> PrintOrder:
    order.updated_at = utc_now()
    return order


def claim_payment(
    *,
    session: Session,
    order_id: int,
    payment_id: str | None,
    paid_amount: Decimal,
) -> bool:
    """
    把订单标记为已付款（条件更新）

    只有 payment_status 不是 paid 的订单会被更新；同一订单的另一笔支付已经
    认领过时 rowcount = 0。不提交事务，由调用方和印刷任务提交一起提交或回滚。
    """
    result = session.exec(  # type: ignore[call-overload]
        update(PrintOrder)
        .where(
            PrintOrder.id == order_id,
            PrintOrder.payment_status != OrderPaymentStatus.paid,
        )
        .values(
            payment_status=OrderPaymentStatus.paid,
            payment_id=payment_id,
            paid_amount=paid_amount,
            updated_at=utc_now(),
        )
    )
    session.flush()
    return result.rowcount == 1


def count_by_status(*, session: Session) -> dict[str, int]:
    rows = session.exec(
        select(PrintOrder.status, func.count()).group_by(PrintOrder.status)
    ).all()
    return {str(getattr(s, "value", s)): int(n) for s, n in rows}


def count_by_payment_status(*, session: Session) -> dict[str, int]:
    rows = session.exec(
        select(PrintOrder.payment_status, func.count()).group_by(PrintOrder.payment_status)
    ).all()
    counts = {s.value: 0 for s in OrderPaymentStatus}
    counts.update({str(getattr(s, "value", s)): int(n) for s, n in rows})
    return counts


def create(*, session: Session, data: dict[str, Any]) -> PrintOrder:
    order = PrintOrder(**data)
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def paid_revenue(*, session: Session) -> Decimal:
    total = session.exec(
        select(func.coalesce(func.sum(PrintOrder.paid_amount), 0)).where(
            PrintOrder.payment_status == OrderPaymentStatus.paid
        )
    ).one()
    return Decimal(str(total)).quantize(Decimal("0.01"))
