"""
定时任务调度器
"""

import logging
from datetime import timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storyprint.core.config import settings
from storyprint.worker.tasks import sweep_pending_payments

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_job(
        sweep_pending_payments,
        IntervalTrigger(minutes=settings.PENDING_SWEEP_INTERVAL_MINUTES),
        id="pending_payment_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduler started. Pending payment sweep runs every %s minutes.",
        settings.PENDING_SWEEP_INTERVAL_MINUTES,
    )
    scheduler.start()


if __name__ == "__main__":
    main()
