"""
Redis 连接模块

Redis 只用于分布式锁：待支付订单对账任务可能被定时任务和管理员同时触发，
通过锁保证同一时刻只有一个进程在跑对账。
"""
from __future__ import annotations

import logging
from functools import lru_cache

import redis

from storyprint.core.config import settings

logger = logging.getLogger(__name__)

# 只有持有者（value 匹配）才能释放锁
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """获取 Redis 客户端实例（单例，首次使用时才建立连接）"""
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )


def acquire_lock(client: redis.Redis, key: str, value: str, *, expire_seconds: int = 60) -> bool:
    """
    获取分布式锁（SET NX EX）

    Args:
        client: Redis 客户端
        key: 锁键
        value: 锁值（释放时校验）
        expire_seconds: 锁过期时间（秒），进程崩溃后锁会自动失效

    Returns:
        是否获取成功
    """
    try:
        return bool(client.set(key, value, ex=expire_seconds, nx=True))
    except redis.RedisError as e:
        logger.error("Failed to acquire lock %s: %s", key, e)
        return False


def release_lock(client: redis.Redis, key: str, value: str) -> bool:
    """释放分布式锁（Lua 脚本保证比较和删除是原子的）"""
    try:
        return client.eval(_RELEASE_LOCK_SCRIPT, 1, key, value) == 1
    except redis.RedisError as e:
        logger.error("Failed to release lock %s: %s", key, e)
        return False
