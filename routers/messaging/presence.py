from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from models import User
from routers.dependencies import get_broadcaster, get_current_user
from utils.pusher_client import Broadcaster

from .schemas import (
    MarkOfflineRequest,
    OnlineMembersResponse,
    PresenceStatsResponse,
    PresenceUpdateResponse,
    UpdatePresenceRequest,
)
from .service import get_online_members as service_get_online_members
from .service import get_presence_stats as service_get_presence_stats
from .service import mark_offline as service_mark_offline
from .service import require_group_member
from .service import update_presence as service_update_presence

router = APIRouter(prefix="/groups/{group_id}/presence", tags=["Presence"])


@router.post("", response_model=PresenceUpdateResponse)
async def update_presence(
    group_id: int,
    request: UpdatePresenceRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    Heartbeat. Non-members get `updated: false` rather than an error,
    since membership can change while a client is still connected.
    """
    return await service_update_presence(
        db,
        broadcaster,
        group_id=group_id,
        user_id=current_user.account_id,
        is_online=request.is_online,
        session_id=request.session_id,
    )


@router.post("/offline", response_model=PresenceUpdateResponse)
async def mark_offline(
    group_id: int,
    request: MarkOfflineRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_mark_offline(
        db,
        broadcaster,
        group_id=group_id,
        user_id=current_user.account_id,
        session_id=request.session_id,
    )


@router.get("", response_model=PresenceStatsResponse)
async def get_presence_stats(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_group_member(db, current_user=current_user, group_id=group_id)
    return service_get_presence_stats(db, group_id=group_id)


@router.get("/online", response_model=OnlineMembersResponse)
async def get_online_members(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_group_member(db, current_user=current_user, group_id=group_id)
    members = service_get_online_members(db, group_id=group_id)
    return {"group_id": group_id, "count": len(members), "members": members}
