from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from storyprint.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    """签发访问令牌（sub 为用户 ID）。正式 token 由账户服务签发，这里供内部工具和测试使用。"""
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
