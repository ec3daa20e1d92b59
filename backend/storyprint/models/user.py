"""
用户模型模块

账户本身由账户服务管理，这里只保存下单和收据快照需要的字段。
"""
from datetime import datetime

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel

from .base import id_field, timestamp_field


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（Snowflake），即 JWT 中的 sub
    - email: 邮箱（唯一），默认作为印刷订单的联系邮箱
    - name / username: 展示名称，写入收据快照
    - is_admin: 是否可以访问管理接口（对账、退款、强制同步）
    """
    __tablename__ = "users"
    id: int = id_field()
    email: str = Field(sa_column=Column(String(255), unique=True, index=True, nullable=False))
    name: str | None = Field(default=None, max_length=128)
    username: str | None = Field(default=None, max_length=64)
    is_admin: bool = Field(default=False)

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
