from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import PRIVATE_CHAT_HISTORY_LIMIT
from db import get_db
from models import User
from routers.dependencies import get_broadcaster, get_current_user
from utils.pusher_client import Broadcaster

from .schemas import (
    ConversationListResponse,
    ConversationResponse,
    DeleteMessageRequest,
    DeleteMessageResponse,
    MarkDeliveredResponse,
    MarkReadRequest,
    MarkReadResponse,
    PrivateTypingRequest,
    SendMessageRequest,
    SendMessageResponse,
    TypingResponse,
    UnreadCountsResponse,
)
from .service import delete_private_message as service_delete_private_message
from .service import get_private_conversation as service_get_private_conversation
from .service import get_private_conversations as service_get_private_conversations
from .service import get_unread_counts as service_get_unread_counts
from .service import mark_private_message_delivered as service_mark_private_message_delivered
from .service import mark_private_messages_read as service_mark_private_messages_read
from .service import send_private_message as service_send_private_message
from .service import send_private_typing as service_send_private_typing

router = APIRouter(prefix="/messages", tags=["Direct Messages"])


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    Send a direct message.
    Content is encrypted at rest; the live event carries plaintext.
    `broadcast: false` means the message is stored but was not pushed to the chat channel.
    `notified` reports the recipient's notification channel separately.
    """
    return await service_send_private_message(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = Query(50, ge=1, le=100, example=50),
    offset: int = Query(0, ge=0, example=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    List the user's direct-message conversations, most recent first.
    Each entry carries the last visible message and the unread count from that partner.
    """
    return service_get_private_conversations(db, current_user=current_user, limit=limit, offset=offset)


@router.get("/conversation/{user_id}", response_model=ConversationResponse)
async def get_conversation(
    user_id: int,
    limit: int = Query(PRIVATE_CHAT_HISTORY_LIMIT, ge=1, le=100, example=50),
    before: Optional[int] = Query(None, description="Return messages older than this id", example=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Conversation with one user, oldest first."""
    return service_get_private_conversation(
        db, current_user=current_user, user_id=user_id, limit=limit, before=before
    )


@router.get("/unread", response_model=UnreadCountsResponse)
async def get_unread_counts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return service_get_unread_counts(db, current_user=current_user)


@router.post("/read", response_model=MarkReadResponse)
async def mark_read(
    request: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    Mark messages as read, either every unread message from `sender_id`
    or the listed `message_ids`. Read also marks delivered.
    """
    return await service_mark_private_messages_read(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.post("/typing", response_model=TypingResponse)
async def typing(
    request: PrivateTypingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_send_private_typing(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.post("/{message_id}/delivered", response_model=MarkDeliveredResponse)
async def mark_delivered(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Recipient-only; calling it again is a no-op."""
    return await service_mark_private_message_delivered(
        db, current_user=current_user, message_id=message_id, broadcaster=broadcaster
    )


@router.post("/{message_id}/delete", response_model=DeleteMessageResponse)
async def delete_message(
    message_id: int,
    request: DeleteMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    `everyone` (sender only) replaces the content with a tombstone for both sides.
    `self` hides the message for the requester only.
    """
    return await service_delete_private_message(
        db,
        current_user=current_user,
        message_id=message_id,
        scope=request.scope,
        broadcaster=broadcaster,
    )
