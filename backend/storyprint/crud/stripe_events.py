"""Stripe Webhook 事件 CRUD 操作"""
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from storyprint.models import StripeEvent


def exists(*, session: Session, event_id: str) -> bool:
    return session.exec(select(StripeEvent.id).where(StripeEvent.event_id == event_id)).first() is not None


def record(*, session: Session, event_id: str, event_type: str, payload: dict[str, Any]) -> bool:
    """
    记录已处理的事件

    Returns:
        False 表示该事件已被其它请求记录（并发重复投递）
    """
    try:
        session.add(StripeEvent(event_id=event_id, event_type=event_type, payload=payload))
        session.commit()
    except IntegrityError:
        session.rollback()
        return False
    return True
