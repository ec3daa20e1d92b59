"""
基础模型模块

定义所有模型共用的基础类和工具函数。
"""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel

from storyprint.core.snowflake import generate_id


def utc_now() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def id_field() -> Any:
    """Snowflake 主键字段（应用侧生成，不使用自增）"""
    return Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )


def timestamp_field() -> Any:
    """带时区的时间戳字段，默认当前 UTC 时间"""
    return Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


__all__ = ["SQLModel", "utc_now", "id_field", "timestamp_field"]
