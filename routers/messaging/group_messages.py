from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from db import get_db
from models import User
from routers.dependencies import get_broadcaster, get_current_user
from utils.pusher_client import Broadcaster

from .schemas import (
    DeleteMessageResponse,
    GroupMessagesResponse,
    PinMessageRequest,
    PinMessageResponse,
    SendGroupMessageRequest,
    SendGroupMessageResponse,
    TypingRequest,
    TypingResponse,
)
from .service import delete_group_message as service_delete_group_message
from .service import get_group_messages as service_get_group_messages
from .service import get_pinned_group_messages as service_get_pinned_group_messages
from .service import send_group_message as service_send_group_message
from .service import send_group_typing as service_send_group_typing
from .service import toggle_pin_group_message as service_toggle_pin_group_message

router = APIRouter(prefix="/groups", tags=["Group Messages"])


@router.post("/{group_id}/messages", response_model=SendGroupMessageResponse)
async def send_group_message(
    group_id: int,
    request: SendGroupMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_send_group_message(
        db, current_user=current_user, group_id=group_id, request=request, broadcaster=broadcaster
    )


@router.get("/{group_id}/messages", response_model=GroupMessagesResponse)
async def get_group_messages(
    group_id: int,
    limit: int = Query(50, ge=1, le=100, example=50),
    before: Optional[int] = Query(None, example=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return service_get_group_messages(
        db, current_user=current_user, group_id=group_id, limit=limit, before=before
    )


@router.delete("/{group_id}/messages/{message_id}", response_model=DeleteMessageResponse)
async def delete_group_message(
    group_id: int,
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Sender only. The message stays in the thread as a tombstone."""
    return await service_delete_group_message(
        db, current_user=current_user, group_id=group_id, message_id=message_id, broadcaster=broadcaster
    )


@router.post("/{group_id}/pin", response_model=PinMessageResponse)
async def toggle_pin(
    group_id: int,
    request: PinMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Pin the message, or unpin it if it is already pinned."""
    return await service_toggle_pin_group_message(
        db,
        current_user=current_user,
        group_id=group_id,
        message_id=request.message_id,
        broadcaster=broadcaster,
    )


@router.get("/{group_id}/pinned", response_model=GroupMessagesResponse)
async def get_pinned_messages(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return service_get_pinned_group_messages(db, current_user=current_user, group_id=group_id)


@router.post("/{group_id}/typing", response_model=TypingResponse)
async def group_typing(
    group_id: int,
    request: TypingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_send_group_typing(
        db, current_user=current_user, group_id=group_id, request=request, broadcaster=broadcaster
    )
