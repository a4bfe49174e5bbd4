"""Messaging/Realtime repository layer.

State transitions are single conditional UPDATEs; callers read ``rowcount``
to learn whether anything changed.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from models import (
    MESSAGE_TOMBSTONE,
    Group,
    GroupMember,
    GroupMemberPresence,
    GroupMessage,
    Message,
    PinnedGroupMessage,
)

# --- Direct messages ---


def create_message(
    db: Session,
    *,
    sender_id: int,
    receiver_id: int,
    content: Optional[str],
    is_encrypted: bool,
    media_url: Optional[str],
    message_type: str,
    reply_to_id: Optional[int],
    created_at: datetime,
) -> Message:
    message = Message(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        is_encrypted=is_encrypted,
        media_url=media_url,
        message_type=message_type,
        reply_to_id=reply_to_id,
        created_at=created_at,
    )
    db.add(message)
    return message


def get_message(db: Session, *, message_id: int) -> Optional[Message]:
    return db.query(Message).filter(Message.id == message_id).first()


def list_conversation_messages(
    db: Session,
    *,
    viewer_id: int,
    other_id: int,
    limit: int,
    before_id: Optional[int] = None,
) -> List[Message]:
    """Newest ``limit`` messages between two users, returned oldest first."""
    query = db.query(Message).filter(
        or_(
            and_(
                Message.sender_id == viewer_id,
                Message.receiver_id == other_id,
                Message.deleted_by_sender.is_(False),
            ),
            and_(
                Message.sender_id == other_id,
                Message.receiver_id == viewer_id,
                Message.deleted_by_receiver.is_(False),
            ),
        )
    )
    if before_id is not None:
        query = query.filter(Message.id < before_id)
    rows = query.order_by(Message.id.desc()).limit(limit).all()
    rows.reverse()
    return rows


def count_unread_by_sender(db: Session, *, receiver_id: int):
    return (
        db.query(Message.sender_id, func.count(Message.id))
        .filter(
            Message.receiver_id == receiver_id,
            Message.is_read.is_(False),
            Message.is_deleted.is_(False),
            Message.deleted_by_receiver.is_(False),
        )
        .group_by(Message.sender_id)
        .all()
    )


def list_latest_messages_by_partner(db: Session, *, viewer_id: int, limit: int, offset: int = 0) -> List[Message]:
    """Latest message the viewer can still see with each partner, newest first."""
    rows = (
        db.query(Message.sender_id, Message.receiver_id, func.max(Message.id))
        .filter(
            or_(
                and_(Message.sender_id == viewer_id, Message.deleted_by_sender.is_(False)),
                and_(Message.receiver_id == viewer_id, Message.deleted_by_receiver.is_(False)),
            )
        )
        .group_by(Message.sender_id, Message.receiver_id)
        .all()
    )
    # At most two rows per partner, one per direction
    latest = {}
    for sender_id, receiver_id, last_id in rows:
        partner_id = receiver_id if sender_id == viewer_id else sender_id
        latest[partner_id] = max(last_id, latest.get(partner_id, 0))
    page = sorted(latest.values(), reverse=True)[offset : offset + limit]
    if not page:
        return []
    return db.query(Message).filter(Message.id.in_(page)).order_by(Message.id.desc()).all()


def mark_message_delivered(db: Session, *, message_id: int, receiver_id: int, now: datetime) -> int:
    return (
        db.query(Message)
        .filter(
            Message.id == message_id,
            Message.receiver_id == receiver_id,
            Message.is_delivered.is_(False),
            Message.is_deleted.is_(False),
        )
        .update(
            {Message.is_delivered: True, Message.delivered_at: now},
            synchronize_session=False,
        )
    )


def list_unread_messages(
    db: Session,
    *,
    receiver_id: int,
    sender_id: Optional[int] = None,
    message_ids: Optional[Iterable[int]] = None,
):
    query = db.query(Message.id, Message.sender_id).filter(
        Message.receiver_id == receiver_id,
        Message.is_read.is_(False),
    )
    if sender_id is not None:
        query = query.filter(Message.sender_id == sender_id)
    if message_ids is not None:
        query = query.filter(Message.id.in_(list(message_ids)))
    return query.order_by(Message.id.asc()).all()


def mark_messages_read(db: Session, *, message_ids: List[int], receiver_id: int, now: datetime) -> int:
    if not message_ids:
        return 0
    # Read implies delivered; never clear either flag
    (
        db.query(Message)
        .filter(
            Message.id.in_(message_ids),
            Message.receiver_id == receiver_id,
            Message.is_delivered.is_(False),
        )
        .update(
            {Message.is_delivered: True, Message.delivered_at: now},
            synchronize_session=False,
        )
    )
    return (
        db.query(Message)
        .filter(
            Message.id.in_(message_ids),
            Message.receiver_id == receiver_id,
            Message.is_read.is_(False),
        )
        .update(
            {Message.is_read: True, Message.read_at: now},
            synchronize_session=False,
        )
    )


def tombstone_message(db: Session, *, message_id: int, sender_id: int, now: datetime) -> int:
    return (
        db.query(Message)
        .filter(
            Message.id == message_id,
            Message.sender_id == sender_id,
            Message.is_deleted.is_(False),
        )
        .update(
            {
                Message.content: MESSAGE_TOMBSTONE,
                Message.media_url: None,
                Message.is_encrypted: False,
                Message.is_deleted: True,
                Message.deleted_at: now,
            },
            synchronize_session=False,
        )
    )


def hide_message_for_user(db: Session, *, message: Message, user_id: int) -> int:
    if message.sender_id == user_id:
        column = Message.deleted_by_sender
    else:
        column = Message.deleted_by_receiver
    return (
        db.query(Message)
        .filter(Message.id == message.id, column.is_(False))
        .update({column: True}, synchronize_session=False)
    )


# --- Groups ---


def get_group(db: Session, *, group_id: int) -> Optional[Group]:
    return db.query(Group).filter(Group.id == group_id).first()


def create_group_message(
    db: Session,
    *,
    group_id: int,
    sender_id: int,
    content: Optional[str],
    is_encrypted: bool,
    media_url: Optional[str],
    message_type: str,
    reply_to_id: Optional[int],
    created_at: datetime,
) -> GroupMessage:
    message = GroupMessage(
        group_id=group_id,
        sender_id=sender_id,
        content=content,
        is_encrypted=is_encrypted,
        media_url=media_url,
        message_type=message_type,
        reply_to_id=reply_to_id,
        created_at=created_at,
    )
    db.add(message)
    return message


def get_group_message(db: Session, *, group_id: int, message_id: int) -> Optional[GroupMessage]:
    return (
        db.query(GroupMessage)
        .filter(GroupMessage.id == message_id, GroupMessage.group_id == group_id)
        .first()
    )


def list_group_messages(
    db: Session, *, group_id: int, limit: int, before_id: Optional[int] = None
) -> List[GroupMessage]:
    query = db.query(GroupMessage).filter(GroupMessage.group_id == group_id)
    if before_id is not None:
        query = query.filter(GroupMessage.id < before_id)
    rows = query.order_by(GroupMessage.id.desc()).limit(limit).all()
    rows.reverse()
    return rows


def tombstone_group_message(db: Session, *, group_id: int, message_id: int, sender_id: int, now: datetime) -> int:
    return (
        db.query(GroupMessage)
        .filter(
            GroupMessage.id == message_id,
            GroupMessage.group_id == group_id,
            GroupMessage.sender_id == sender_id,
            GroupMessage.is_deleted.is_(False),
        )
        .update(
            {
                GroupMessage.content: MESSAGE_TOMBSTONE,
                GroupMessage.media_url: None,
                GroupMessage.is_encrypted: False,
                GroupMessage.is_deleted: True,
                GroupMessage.deleted_at: now,
            },
            synchronize_session=False,
        )
    )


def get_pin(db: Session, *, group_id: int, message_id: int) -> Optional[PinnedGroupMessage]:
    return (
        db.query(PinnedGroupMessage)
        .filter(
            PinnedGroupMessage.group_id == group_id,
            PinnedGroupMessage.message_id == message_id,
        )
        .first()
    )


def create_pin(db: Session, *, group_id: int, message_id: int, pinned_by: int, pinned_at: datetime):
    pin = PinnedGroupMessage(
        group_id=group_id, message_id=message_id, pinned_by=pinned_by, pinned_at=pinned_at
    )
    db.add(pin)
    return pin


def delete_pin(db: Session, *, group_id: int, message_id: int) -> int:
    return (
        db.query(PinnedGroupMessage)
        .filter(
            PinnedGroupMessage.group_id == group_id,
            PinnedGroupMessage.message_id == message_id,
        )
        .delete(synchronize_session=False)
    )


def list_pinned_message_ids(db: Session, *, group_id: int) -> set:
    rows = db.query(PinnedGroupMessage.message_id).filter(PinnedGroupMessage.group_id == group_id).all()
    return {row[0] for row in rows}


def list_pinned_messages(db: Session, *, group_id: int) -> List[GroupMessage]:
    return (
        db.query(GroupMessage)
        .join(PinnedGroupMessage, PinnedGroupMessage.message_id == GroupMessage.id)
        .filter(PinnedGroupMessage.group_id == group_id)
        .order_by(PinnedGroupMessage.pinned_at.desc())
        .all()
    )


# --- Presence ---


def get_presence(db: Session, *, group_id: int, user_id: int) -> Optional[GroupMemberPresence]:
    return (
        db.query(GroupMemberPresence)
        .filter(
            GroupMemberPresence.group_id == group_id,
            GroupMemberPresence.user_id == user_id,
        )
        .first()
    )


def create_presence(
    db: Session, *, group_id: int, user_id: int, is_online: bool, session_id: Optional[str], last_active: datetime
) -> GroupMemberPresence:
    presence = GroupMemberPresence(
        group_id=group_id,
        user_id=user_id,
        is_online=is_online,
        session_id=session_id,
        last_active=last_active,
    )
    db.add(presence)
    return presence


def mark_presence_offline(db: Session, *, group_id: int, user_id: int, session_id: Optional[str]) -> int:
    query = db.query(GroupMemberPresence).filter(
        GroupMemberPresence.group_id == group_id,
        GroupMemberPresence.user_id == user_id,
        GroupMemberPresence.is_online.is_(True),
    )
    if session_id:
        # A newer session from another tab keeps the member online
        query = query.filter(
            or_(
                GroupMemberPresence.session_id == session_id,
                GroupMemberPresence.session_id.is_(None),
            )
        )
    return query.update({GroupMemberPresence.is_online: False}, synchronize_session=False)


def list_online_presence(db: Session, *, group_id: int, active_since: datetime) -> List[GroupMemberPresence]:
    return (
        db.query(GroupMemberPresence)
        .join(
            GroupMember,
            and_(
                GroupMember.group_id == GroupMemberPresence.group_id,
                GroupMember.user_id == GroupMemberPresence.user_id,
            ),
        )
        .filter(
            GroupMemberPresence.group_id == group_id,
            GroupMemberPresence.is_online.is_(True),
            GroupMemberPresence.last_active > active_since,
        )
        .order_by(GroupMemberPresence.last_active.desc())
        .all()
    )


def count_online_presence(db: Session, *, group_id: int, active_since: datetime) -> int:
    return (
        db.query(func.count(GroupMemberPresence.id))
        .join(
            GroupMember,
            and_(
                GroupMember.group_id == GroupMemberPresence.group_id,
                GroupMember.user_id == GroupMemberPresence.user_id,
            ),
        )
        .filter(
            GroupMemberPresence.group_id == group_id,
            GroupMemberPresence.is_online.is_(True),
            GroupMemberPresence.last_active > active_since,
        )
        .scalar()
        or 0
    )


def list_member_presence(db: Session, *, group_id: int):
    """Every member of the group with its presence row (or None)."""
    return (
        db.query(GroupMember, GroupMemberPresence)
        .outerjoin(
            GroupMemberPresence,
            and_(
                GroupMemberPresence.group_id == GroupMember.group_id,
                GroupMemberPresence.user_id == GroupMember.user_id,
            ),
        )
        .filter(GroupMember.group_id == group_id)
        .all()
    )
