"""
Stripe 事件模型模块
"""
from datetime import datetime

from sqlalchemy import JSON, Column, String
from sqlmodel import Field, SQLModel

from .base import id_field, timestamp_field


class StripeEvent(SQLModel, table=True):
    """
    Stripe Webhook 事件记录模型

    Stripe 重试投递时 event.id 不变，通过 event_id 唯一约束去重，同时保留审计记录。
    """
    __tablename__ = "stripe_events"

    id: int = id_field()
    event_id: str = Field(sa_column=Column(String(255), unique=True, index=True, nullable=False))
    event_type: str = Field(max_length=64)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = timestamp_field()
