"""
定时任务逻辑
"""

import logging
from uuid import uuid4

from sqlmodel import Session

from storyprint.api.deps import (
    get_fulfillment_client,
    get_payment_gateway,
    get_pdf_renderer,
    get_storage,
)
from storyprint.core.db import engine
from storyprint.core.redis import acquire_lock, get_redis, release_lock
from storyprint.services.print_orders import PrintOrderService

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "print:pending_payments:lock"
SWEEP_LOCK_TTL_SECONDS = 60 * 20


def build_print_order_service(session: Session) -> PrintOrderService:
    return PrintOrderService(
        session=session,
        gateway=get_payment_gateway(),
        fulfillment=get_fulfillment_client(),
        storage=get_storage(),
        renderer=get_pdf_renderer(),
    )


def sweep_pending_payments() -> dict | None:
    """
    对账最近未处理的印刷订单支付

    已处于 error 状态的订单不会被自动重提，需要管理员处理。
    同一时刻只允许一个进程执行，拿不到锁时直接跳过本轮。
    """
    redis_client = get_redis()
    lock_value = str(uuid4())
    acquired = acquire_lock(
        redis_client,
        SWEEP_LOCK_KEY,
        lock_value,
        expire_seconds=SWEEP_LOCK_TTL_SECONDS,
    )
    if not acquired:
        logger.info("Pending payment sweep already running, skip this run.")
        return None

    try:
        with Session(engine) as session:
            result = build_print_order_service(session).process_pending_payments(retry_errored=False)
        for error in result["errors"]:
            logger.warning(
                "Payment %s (%s) failed to reconcile: %s",
                error["payment_id"],
                error["checkout_session_id"],
                error["error"],
            )
        return result
    finally:
        release_lock(redis_client, SWEEP_LOCK_KEY, lock_value)
