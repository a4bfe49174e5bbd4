"""Messaging/Realtime service layer.

Every operation persists first, commits, then publishes. A failed publish is
logged and reported as ``broadcast: False`` and never fails the request.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError

from config import (
    GROUP_MESSAGE_RATE_PER_USER_PER_MIN,
    PRESENCE_ONLINE_WINDOW_SECONDS,
    PRIVATE_CHAT_ENABLED,
    PRIVATE_CHAT_MAX_MESSAGES_PER_MINUTE,
)
from core.channels import (
    InvalidChannelIdentifier,
    group_channel,
    private_chat_channel,
    user_notifications_channel,
)
from core.rate_limit import default_rate_limiter
from core.users import (
    display_name,
    get_user_by_id,
    get_users_by_ids,
    is_blocked_between,
    is_group_member,
    user_summary,
)
from utils.encryption import (
    DECRYPTION_FAILED_PLACEHOLDER,
    MessageDecryptionError,
    decrypt_data,
    encrypt_data,
)
from utils.logging_helpers import log_info, log_warning
from utils.message_sanitizer import sanitize_message
from utils.pusher_client import publish_event

from . import repository as messaging_repository

logger = logging.getLogger(__name__)

EVENT_NEW_MESSAGE = "new-message"
EVENT_MESSAGE_DELETED = "message-deleted"
EVENT_MESSAGE_DELIVERED = "message-delivered"
EVENT_MESSAGE_READ = "message-read"
EVENT_MESSAGE_PINNED = "message-pinned"
EVENT_MESSAGE_UNPINNED = "message-unpinned"
EVENT_TYPING = "typing"
EVENT_PRESENCE_UPDATE = "presence-update"


def _utcnow() -> datetime:
    return datetime.utcnow()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _channel_or_400(builder, *args) -> str:
    try:
        return builder(*args)
    except InvalidChannelIdentifier as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _enforce_rate_limit(key: str, limit: int) -> None:
    rl = default_rate_limiter.allow(key=key, limit=limit, window_seconds=60)
    if not rl.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Maximum {limit} messages per minute.",
            headers={"X-Retry-After": str(rl.retry_after_seconds)},
        )


def _clean_body(content: Optional[str], media_url: Optional[str]):
    cleaned = sanitize_message(content) if content else ""
    media = (media_url or "").strip() or None
    if not cleaned and not media:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message must include content or media_url",
        )
    return cleaned, media


def _readable_content(message) -> Optional[str]:
    """Plaintext for display. A corrupt ciphertext yields a placeholder."""
    if not message.is_encrypted:
        return message.content
    try:
        return decrypt_data(message.content)
    except MessageDecryptionError as e:
        log_warning(logger, "Message decryption failed", message_id=message.id, error=e)
        return DECRYPTION_FAILED_PLACEHOLDER


# --- Direct messages ---


def _serialize_message(message, content: Optional[str]) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "content": content,
        "media_url": message.media_url,
        "message_type": message.message_type,
        "reply_to_id": message.reply_to_id,
        "is_delivered": bool(message.is_delivered),
        "delivered_at": _iso(message.delivered_at),
        "is_read": bool(message.is_read),
        "read_at": _iso(message.read_at),
        "is_deleted": bool(message.is_deleted),
        "created_at": _iso(message.created_at),
    }


def _message_event(message, content: Optional[str], sender) -> Dict[str, Any]:
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "content": content,
        "mediaUrl": message.media_url,
        "messageType": message.message_type,
        "replyToId": message.reply_to_id,
        "isDelivered": bool(message.is_delivered),
        "isRead": bool(message.is_read),
        "createdAt": _iso(message.created_at),
        "sender": user_summary(sender),
    }


def _require_private_chat_enabled():
    if not PRIVATE_CHAT_ENABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Private chat is disabled")


def _require_message_participant(db, *, current_user, message_id: int):
    message = messaging_repository.get_message(db, message_id=message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if current_user.account_id not in (message.sender_id, message.receiver_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this message")
    return message


async def send_private_message(db, *, current_user, request, broadcaster):
    _require_private_chat_enabled()

    content, media_url = _clean_body(request.content, request.media_url)

    if request.receiver_id == current_user.account_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot message yourself")

    receiver = get_user_by_id(db, account_id=request.receiver_id)
    if not receiver:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")

    if is_blocked_between(db, current_user.account_id, receiver.account_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")

    if request.reply_to_id is not None:
        parent = messaging_repository.get_message(db, message_id=request.reply_to_id)
        if not parent or {parent.sender_id, parent.receiver_id} != {
            current_user.account_id,
            receiver.account_id,
        }:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="reply_to_id must reference a message in this conversation",
            )

    _enforce_rate_limit(
        f"rl:private_chat:minute:{current_user.account_id}",
        PRIVATE_CHAT_MAX_MESSAGES_PER_MINUTE,
    )

    message = messaging_repository.create_message(
        db,
        sender_id=current_user.account_id,
        receiver_id=receiver.account_id,
        content=encrypt_data(content) if content else None,
        is_encrypted=bool(content),
        media_url=media_url,
        message_type=request.message_type or "text",
        reply_to_id=request.reply_to_id,
        created_at=_utcnow(),
    )
    db.commit()
    db.refresh(message)

    log_info(
        logger,
        "Private message stored",
        user_id=current_user.account_id,
        message_id=message.id,
        receiver_id=receiver.account_id,
    )

    # Broadcast payloads carry plaintext; only storage is encrypted
    event = _message_event(message, content or None, current_user)
    chat_ok = await publish_event(
        broadcaster,
        private_chat_channel(current_user.account_id, receiver.account_id),
        EVENT_NEW_MESSAGE,
        event,
    )
    notify_ok = await publish_event(
        broadcaster,
        user_notifications_channel(receiver.account_id),
        EVENT_NEW_MESSAGE,
        event,
    )

    return {
        "message": _serialize_message(message, content or None),
        "broadcast": chat_ok,
        "notified": notify_ok,
    }


def get_private_conversations(db, *, current_user, limit: int, offset: int = 0):
    """Inbox: one entry per partner with the last visible message and unread count."""
    messages = messaging_repository.list_latest_messages_by_partner(
        db, viewer_id=current_user.account_id, limit=limit, offset=offset
    )
    partner_ids = [
        m.receiver_id if m.sender_id == current_user.account_id else m.sender_id for m in messages
    ]
    partners = get_users_by_ids(db, account_ids=partner_ids)
    unread = dict(messaging_repository.count_unread_by_sender(db, receiver_id=current_user.account_id))

    conversations = []
    for partner_id, message in zip(partner_ids, messages):
        conversations.append(
            {
                "channel": private_chat_channel(current_user.account_id, partner_id),
                "user": user_summary(partners.get(partner_id)),
                "last_message": _serialize_message(message, _readable_content(message)),
                "unread_count": unread.get(partner_id, 0),
            }
        )
    return {"conversations": conversations}


def get_private_conversation(db, *, current_user, user_id: int, limit: int, before: Optional[int]):
    other = get_user_by_id(db, account_id=user_id)
    if not other:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    channel = _channel_or_400(private_chat_channel, current_user.account_id, other.account_id)

    messages = messaging_repository.list_conversation_messages(
        db,
        viewer_id=current_user.account_id,
        other_id=other.account_id,
        limit=limit,
        before_id=before,
    )
    return {
        "channel": channel,
        "user": user_summary(other),
        "messages": [_serialize_message(m, _readable_content(m)) for m in messages],
    }


def get_unread_counts(db, *, current_user):
    rows = messaging_repository.count_unread_by_sender(db, receiver_id=current_user.account_id)
    by_sender = [{"sender_id": sender_id, "count": count} for sender_id, count in rows]
    return {"total": sum(item["count"] for item in by_sender), "by_sender": by_sender}


async def mark_private_message_delivered(db, *, current_user, message_id: int, broadcaster):
    message = messaging_repository.get_message(db, message_id=message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if message.receiver_id != current_user.account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the recipient can mark a message as delivered",
        )

    changed = (
        messaging_repository.mark_message_delivered(
            db, message_id=message_id, receiver_id=current_user.account_id, now=_utcnow()
        )
        > 0
    )
    db.commit()
    db.refresh(message)

    broadcast = False
    if changed:
        broadcast = await publish_event(
            broadcaster,
            private_chat_channel(message.sender_id, message.receiver_id),
            EVENT_MESSAGE_DELIVERED,
            {
                "messageId": message.id,
                "senderId": message.sender_id,
                "receiverId": message.receiver_id,
                "deliveredAt": _iso(message.delivered_at),
            },
        )

    return {
        "message_id": message.id,
        "changed": changed,
        "is_delivered": bool(message.is_delivered),
        "delivered_at": _iso(message.delivered_at),
        "broadcast": broadcast,
    }


async def mark_private_messages_read(db, *, current_user, request, broadcaster):
    if request.sender_id is None and not request.message_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide sender_id or message_ids",
        )

    rows = messaging_repository.list_unread_messages(
        db,
        receiver_id=current_user.account_id,
        sender_id=request.sender_id,
        message_ids=request.message_ids,
    )
    if not rows:
        return {"updated": 0, "message_ids": [], "read_at": None, "broadcast": False}

    now = _utcnow()
    message_ids = [row[0] for row in rows]
    updated = messaging_repository.mark_messages_read(
        db, message_ids=message_ids, receiver_id=current_user.account_id, now=now
    )
    db.commit()

    by_sender: Dict[int, List[int]] = defaultdict(list)
    for message_id, sender_id in rows:
        by_sender[sender_id].append(message_id)

    broadcast = True
    for sender_id, ids in by_sender.items():
        ok = await publish_event(
            broadcaster,
            private_chat_channel(sender_id, current_user.account_id),
            EVENT_MESSAGE_READ,
            {"messageIds": ids, "readerId": current_user.account_id, "readAt": _iso(now)},
        )
        broadcast = broadcast and ok

    return {
        "updated": updated,
        "message_ids": message_ids,
        "read_at": _iso(now),
        "broadcast": broadcast,
    }


async def delete_private_message(db, *, current_user, message_id: int, scope: str, broadcaster):
    message = _require_message_participant(db, current_user=current_user, message_id=message_id)

    if scope == "everyone":
        if message.sender_id != current_user.account_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the sender can delete a message for everyone",
            )
        changed = (
            messaging_repository.tombstone_message(
                db, message_id=message.id, sender_id=current_user.account_id, now=_utcnow()
            )
            > 0
        )
        db.commit()
        broadcast = False
        if changed:
            broadcast = await publish_event(
                broadcaster,
                private_chat_channel(message.sender_id, message.receiver_id),
                EVENT_MESSAGE_DELETED,
                {"messageId": message.id, "deletedBy": current_user.account_id, "scope": "everyone"},
            )
        return {"message_id": message.id, "scope": scope, "changed": changed, "broadcast": broadcast}

    # Per-side visibility flag only; the other party's view is untouched
    changed = (
        messaging_repository.hide_message_for_user(db, message=message, user_id=current_user.account_id)
        > 0
    )
    db.commit()
    return {"message_id": message.id, "scope": scope, "changed": changed, "broadcast": False}


# --- Typing ---


async def send_typing(broadcaster, channel: str, *, user_id: int, user_name: str, is_typing: bool) -> bool:
    """Publish a typing signal once. No acknowledgment, no retry."""
    return await publish_event(
        broadcaster,
        channel,
        EVENT_TYPING,
        {"userId": user_id, "userName": user_name, "isTyping": bool(is_typing)},
    )


async def send_private_typing(db, *, current_user, request, broadcaster):
    if request.receiver_id == current_user.account_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot type to yourself")
    receiver = get_user_by_id(db, account_id=request.receiver_id)
    if not receiver:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    if is_blocked_between(db, current_user.account_id, receiver.account_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")

    channel = private_chat_channel(current_user.account_id, receiver.account_id)
    ok = await send_typing(
        broadcaster,
        channel,
        user_id=current_user.account_id,
        user_name=display_name(current_user),
        is_typing=request.is_typing,
    )
    return {"channel": channel, "is_typing": request.is_typing, "broadcast": ok}


async def send_group_typing(db, *, current_user, group_id: int, request, broadcaster):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    channel = group_channel(group_id)
    ok = await send_typing(
        broadcaster,
        channel,
        user_id=current_user.account_id,
        user_name=display_name(current_user),
        is_typing=request.is_typing,
    )
    return {"channel": channel, "is_typing": request.is_typing, "broadcast": ok}


# --- Group messages ---


def _require_group_member(db, *, group_id: int, user_id: int):
    group = messaging_repository.get_group(db, group_id=group_id)
    if not group:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    if not is_group_member(db, group_id=group_id, user_id=user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this group")
    return group


def _serialize_group_message(message, *, sender, content: Optional[str], pinned_ids=()) -> Dict[str, Any]:
    return {
        "id": message.id,
        "group_id": message.group_id,
        "sender": user_summary(sender),
        "content": content,
        "media_url": message.media_url,
        "message_type": message.message_type,
        "reply_to_id": message.reply_to_id,
        "is_deleted": bool(message.is_deleted),
        "is_pinned": message.id in pinned_ids,
        "created_at": _iso(message.created_at),
    }


def _group_message_event(message, *, sender, content: Optional[str]) -> Dict[str, Any]:
    return {
        "id": message.id,
        "groupId": message.group_id,
        "senderId": message.sender_id,
        "content": content,
        "mediaUrl": message.media_url,
        "messageType": message.message_type,
        "replyToId": message.reply_to_id,
        "createdAt": _iso(message.created_at),
        "sender": user_summary(sender),
    }


async def send_group_message(db, *, current_user, group_id: int, request, broadcaster):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    content, media_url = _clean_body(request.content, request.media_url)

    if request.reply_to_id is not None:
        parent = messaging_repository.get_group_message(
            db, group_id=group_id, message_id=request.reply_to_id
        )
        if not parent:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="reply_to_id must reference a message in this group",
            )

    _enforce_rate_limit(
        f"rl:group_chat:minute:{group_id}:{current_user.account_id}",
        GROUP_MESSAGE_RATE_PER_USER_PER_MIN,
    )

    message = messaging_repository.create_group_message(
        db,
        group_id=group_id,
        sender_id=current_user.account_id,
        content=encrypt_data(content) if content else None,
        is_encrypted=bool(content),
        media_url=media_url,
        message_type=request.message_type or "text",
        reply_to_id=request.reply_to_id,
        created_at=_utcnow(),
    )
    db.commit()
    db.refresh(message)

    log_info(logger, "Group message stored", user_id=current_user.account_id, group_id=group_id, message_id=message.id)

    ok = await publish_event(
        broadcaster,
        group_channel(group_id),
        EVENT_NEW_MESSAGE,
        _group_message_event(message, sender=current_user, content=content or None),
    )
    return {
        "message": _serialize_group_message(message, sender=current_user, content=content or None),
        "broadcast": ok,
    }


def get_group_messages(db, *, current_user, group_id: int, limit: int, before: Optional[int]):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    messages = messaging_repository.list_group_messages(db, group_id=group_id, limit=limit, before_id=before)
    senders = get_users_by_ids(db, account_ids=[m.sender_id for m in messages])
    pinned_ids = messaging_repository.list_pinned_message_ids(db, group_id=group_id)
    return {
        "group_id": group_id,
        "messages": [
            _serialize_group_message(
                m,
                sender=senders.get(m.sender_id),
                content=_readable_content(m),
                pinned_ids=pinned_ids,
            )
            for m in messages
        ],
    }


async def delete_group_message(db, *, current_user, group_id: int, message_id: int, broadcaster):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    message = messaging_repository.get_group_message(db, group_id=group_id, message_id=message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if message.sender_id != current_user.account_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the sender can delete this message")

    changed = (
        messaging_repository.tombstone_group_message(
            db,
            group_id=group_id,
            message_id=message_id,
            sender_id=current_user.account_id,
            now=_utcnow(),
        )
        > 0
    )
    if changed:
        messaging_repository.delete_pin(db, group_id=group_id, message_id=message_id)
    db.commit()
    broadcast = False
    if changed:
        broadcast = await publish_event(
            broadcaster,
            group_channel(group_id),
            EVENT_MESSAGE_DELETED,
            {"messageId": message_id, "groupId": group_id, "deletedBy": current_user.account_id},
        )
    return {"message_id": message_id, "scope": "everyone", "changed": changed, "broadcast": broadcast}


async def toggle_pin_group_message(db, *, current_user, group_id: int, message_id: int, broadcaster):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    message = messaging_repository.get_group_message(db, group_id=group_id, message_id=message_id)
    if not message or message.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    if messaging_repository.get_pin(db, group_id=group_id, message_id=message_id):
        messaging_repository.delete_pin(db, group_id=group_id, message_id=message_id)
        db.commit()
        pinned = False
    else:
        messaging_repository.create_pin(
            db,
            group_id=group_id,
            message_id=message_id,
            pinned_by=current_user.account_id,
            pinned_at=_utcnow(),
        )
        try:
            db.commit()
        except IntegrityError:
            # Pinned concurrently by another member
            db.rollback()
        pinned = True

    ok = await publish_event(
        broadcaster,
        group_channel(group_id),
        EVENT_MESSAGE_PINNED if pinned else EVENT_MESSAGE_UNPINNED,
        {"messageId": message_id, "groupId": group_id, "userId": current_user.account_id},
    )
    return {"message_id": message_id, "pinned": pinned, "broadcast": ok}


def get_pinned_group_messages(db, *, current_user, group_id: int):
    _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
    messages = messaging_repository.list_pinned_messages(db, group_id=group_id)
    senders = get_users_by_ids(db, account_ids=[m.sender_id for m in messages])
    return {
        "group_id": group_id,
        "messages": [
            _serialize_group_message(
                m,
                sender=senders.get(m.sender_id),
                content=_readable_content(m),
                pinned_ids={m.id},
            )
            for m in messages
        ],
    }


# --- Presence ---


def _online_cutoff(now: datetime) -> datetime:
    return now - timedelta(seconds=PRESENCE_ONLINE_WINDOW_SECONDS)


def is_presence_online(presence, now: Optional[datetime] = None) -> bool:
    """Online iff flagged online and active within the presence window."""
    if presence is None or not presence.is_online or presence.last_active is None:
        return False
    now = now or _utcnow()
    return presence.last_active > _online_cutoff(now)


def _presence_member(user, presence, now: datetime) -> Dict[str, Any]:
    return {
        "user": user_summary(user),
        "is_online": is_presence_online(presence, now),
        "last_active": _iso(presence.last_active) if presence else None,
    }


async def broadcast_presence_update(
    broadcaster, *, group_id: int, user_id: int, is_online: bool, online_count: Optional[int] = None
) -> bool:
    """Fire-and-forget ``presence-update`` on the group channel."""
    try:
        return await publish_event(
            broadcaster,
            group_channel(group_id),
            EVENT_PRESENCE_UPDATE,
            {
                "userId": user_id,
                "isOnline": is_online,
                "onlineCount": online_count,
                "timestamp": _iso(_utcnow()),
            },
        )
    except InvalidChannelIdentifier as e:
        log_warning(logger, "Presence broadcast skipped", group_id=group_id, error=e)
        return False


async def update_presence(
    db, broadcaster, *, group_id: int, user_id: int, is_online: bool, session_id: Optional[str] = None
):
    if not is_group_member(db, group_id=group_id, user_id=user_id):
        # Membership may have been revoked concurrently
        log_info(logger, "Presence update ignored for non-member", user_id=user_id, group_id=group_id)
        return {"updated": False, "is_online": None, "online_count": None, "broadcast": False}

    now = _utcnow()
    presence = messaging_repository.get_presence(db, group_id=group_id, user_id=user_id)
    if presence is None:
        messaging_repository.create_presence(
            db, group_id=group_id, user_id=user_id, is_online=is_online, session_id=session_id, last_active=now
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            presence = messaging_repository.get_presence(db, group_id=group_id, user_id=user_id)

    if presence is not None:
        presence.is_online = is_online
        presence.last_active = now
        presence.session_id = session_id
        db.commit()

    online_count = get_online_members_count(db, group_id=group_id, now=now)
    ok = await broadcast_presence_update(
        broadcaster, group_id=group_id, user_id=user_id, is_online=is_online, online_count=online_count
    )
    return {"updated": True, "is_online": is_online, "online_count": online_count, "broadcast": ok}


async def mark_offline(db, broadcaster, *, group_id: int, user_id: int, session_id: Optional[str] = None):
    """Explicit disconnect: offline now, without waiting out the presence window."""
    changed = (
        messaging_repository.mark_presence_offline(
            db, group_id=group_id, user_id=user_id, session_id=session_id
        )
        > 0
    )
    db.commit()
    if not changed:
        return {"updated": False, "is_online": None, "online_count": None, "broadcast": False}

    online_count = get_online_members_count(db, group_id=group_id)
    ok = await broadcast_presence_update(
        broadcaster, group_id=group_id, user_id=user_id, is_online=False, online_count=online_count
    )
    return {"updated": True, "is_online": False, "online_count": online_count, "broadcast": ok}


def get_online_members(db, *, group_id: int, now: Optional[datetime] = None):
    now = now or _utcnow()
    rows = messaging_repository.list_online_presence(db, group_id=group_id, active_since=_online_cutoff(now))
    users = get_users_by_ids(db, account_ids=[p.user_id for p in rows])
    return [_presence_member(users.get(p.user_id), p, now) for p in rows]


def get_online_members_count(db, *, group_id: int, now: Optional[datetime] = None) -> int:
    now = now or _utcnow()
    return messaging_repository.count_online_presence(db, group_id=group_id, active_since=_online_cutoff(now))


def get_presence_stats(db, *, group_id: int, now: Optional[datetime] = None):
    now = now or _utcnow()
    rows = messaging_repository.list_member_presence(db, group_id=group_id)
    users = get_users_by_ids(db, account_ids=[member.user_id for member, _ in rows])
    members = [_presence_member(users.get(member.user_id), presence, now) for member, presence in rows]
    members.sort(key=lambda m: (not m["is_online"], m["user"]["name"]))

    total = len(members)
    online = sum(1 for m in members if m["is_online"])
    return {
        "group_id": group_id,
        "total_members": total,
        "online_members": online,
        "offline_members": total - online,
        "online_percentage": round(online * 100.0 / total, 1) if total else 0.0,
        "members": members,
    }


def require_group_member(db, *, current_user, group_id: int):
    return _require_group_member(db, group_id=group_id, user_id=current_user.account_id)
