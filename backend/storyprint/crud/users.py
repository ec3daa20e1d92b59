"""用户 CRUD 操作"""
from sqlmodel import Session

from storyprint.models import User


def create(
    *,
    session: Session,
    email: str,
    name: str | None = None,
    username: str | None = None,
    is_admin: bool = False,
) -> User:
    user = User(email=email, name=name, username=username, is_admin=is_admin)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def snapshot(user: User | None) -> dict:
    """收据中保存的用户快照"""
    if user is None:
        return {}
    return {"email": user.email, "name": user.name, "username": user.username}


def get(*, session: Session, user_id: int) -> User | None:
    return session.get(User, user_id)
