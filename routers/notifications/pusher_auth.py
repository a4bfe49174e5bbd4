import logging

from fastapi import APIRouter, Depends, Form, HTTPException, status
from sqlalchemy.orm import Session

from core.channels import (
    GROUP_PREFIX,
    PRIVATE_CALL_PREFIX,
    PRIVATE_CHAT_PREFIX,
    USER_NOTIFICATIONS_PREFIX,
    USER_PREFIX,
    InvalidChannelIdentifier,
    normalize_id,
    parse_pair_channel,
    parse_user_channel,
)
from core.users import is_blocked_between, is_group_member
from db import get_db
from models import User
from routers.calls.service import has_active_call
from routers.dependencies import get_broadcaster, get_current_user
from utils.logging_helpers import log_warning
from utils.pusher_client import Broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pusher", tags=["Pusher"])


def _authorize_pair_channel(db: Session, *, channel_name: str, current_user) -> None:
    try:
        prefix, low, high = parse_pair_channel(channel_name)
    except InvalidChannelIdentifier:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid channel name format")

    if current_user.account_id not in (low, high):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this channel")

    if is_blocked_between(db, low, high):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Users are blocked")

    if prefix == PRIVATE_CALL_PREFIX and not has_active_call(db, user_a=low, user_b=high):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No active call between these users")


@router.post("/auth")
async def pusher_auth(
    socket_id: str = Form(...),
    channel_name: str = Form(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    Authorize a channel subscription.

    private-chat-{a}-{b}: the requester is a or b and neither blocks the other
    private-call-{a}-{b}: the requester is a or b and a call between them is ringing or connected
    user-{id}, user-notifications:{id}: the requester owns the channel
    group-{id}: the requester is a member of the group
    The last three are checked but not signed.
    """
    if channel_name.startswith(f"{PRIVATE_CHAT_PREFIX}-") or channel_name.startswith(f"{PRIVATE_CALL_PREFIX}-"):
        _authorize_pair_channel(db, channel_name=channel_name, current_user=current_user)
        return broadcaster.authenticate(channel=channel_name, socket_id=socket_id)

    if channel_name.startswith(USER_NOTIFICATIONS_PREFIX) or channel_name.startswith(f"{USER_PREFIX}-"):
        try:
            owner_id = parse_user_channel(channel_name)
        except InvalidChannelIdentifier:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid channel name format")
        if owner_id != current_user.account_id:
            log_warning(
                logger,
                "Rejected subscription to another user's channel",
                user_id=current_user.account_id,
                channel=channel_name,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this channel")
        return {"status": "authorized"}

    if channel_name.startswith(f"{GROUP_PREFIX}-"):
        try:
            group_id = normalize_id(channel_name[len(GROUP_PREFIX) + 1:])
        except InvalidChannelIdentifier:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid channel name format")
        if not is_group_member(db, group_id=group_id, user_id=current_user.account_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this group")
        return {"status": "authorized"}

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown channel type")
