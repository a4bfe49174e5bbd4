"""User lookup facade.

The ``users``, ``blocked_users`` and ``group_members`` tables belong to the
accounts and groups services. Realtime domains read them only through these
helpers.
"""

from typing import Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from models import Block, GroupMember, User


def get_user_by_id(db: Session, *, account_id: int) -> Optional[User]:
    return db.query(User).filter(User.account_id == account_id).first()


def get_users_by_ids(db: Session, *, account_ids: Iterable[int]) -> dict:
    ids = list(set(account_ids))
    if not ids:
        return {}
    users = db.query(User).filter(User.account_id.in_(ids)).all()
    return {user.account_id: user for user in users}


def display_name(user: Optional[User]) -> str:
    if user is None:
        return "Unknown"
    return user.display_name or user.username or f"User{user.account_id}"


def user_summary(user: Optional[User]) -> dict:
    if user is None:
        return {"id": None, "name": "Unknown", "username": None, "avatar": None}
    return {
        "id": user.account_id,
        "name": display_name(user),
        "username": user.username,
        "avatar": user.profile_pic_url,
    }


def is_blocked_between(db: Session, user1_id: int, user2_id: int) -> bool:
    """Return True when either user blocks the other."""
    block = (
        db.query(Block.id)
        .filter(
            or_(
                and_(Block.blocker_id == user1_id, Block.blocked_id == user2_id),
                and_(Block.blocker_id == user2_id, Block.blocked_id == user1_id),
            )
        )
        .first()
    )
    return block is not None


def is_group_member(db: Session, *, group_id: int, user_id: int) -> bool:
    member = (
        db.query(GroupMember.id)
        .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .first()
    )
    return member is not None
