"""
应用启动前检查脚本

在应用启动前检查数据库和 Redis 是否可用。
主要用于 Docker Compose 环境：数据库容器可能还在初始化，
通过重试等待依赖服务就绪，之后再执行数据库迁移和初始数据脚本。
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import (
    after_log,
    before_log,
    retry,
    stop_after_attempt,
    wait_fixed,
)

from storyprint.core.db import engine
from storyprint.core.redis import get_redis

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 最多等待 5 分钟
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    """执行 select 1 确认数据库已就绪，失败时由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def check_redis() -> None:
    """对账任务的分布式锁依赖 Redis"""
    try:
        get_redis().ping()
    except Exception as e:
        logger.error(e)
        raise e


def main() -> None:
    logger.info("Initializing service")
    init(engine)
    check_redis()
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
