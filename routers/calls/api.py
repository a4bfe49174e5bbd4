from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from db import get_db
from models import User
from routers.dependencies import get_broadcaster, get_current_user
from utils.pusher_client import Broadcaster

from .schemas import (
    AcceptCallRequest,
    CallIdRequest,
    CallListResponse,
    CallResponse,
    InitiateCallRequest,
    SignalRequest,
    SignalResponse,
)
from .service import accept_call as service_accept_call
from .service import end_call as service_end_call
from .service import get_call as service_get_call
from .service import initiate_call as service_initiate_call
from .service import list_calls as service_list_calls
from .service import mark_call_missed as service_mark_call_missed
from .service import reject_call as service_reject_call
from .service import relay_signal as service_relay_signal

router = APIRouter(prefix="/calls", tags=["Calls"])


@router.post("/initiate", response_model=CallResponse)
async def initiate_call(
    request: InitiateCallRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Start ringing the receiver (`incoming-call` on `user-{receiver}`)."""
    return await service_initiate_call(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.post("/accept", response_model=CallResponse)
async def accept_call(
    request: AcceptCallRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    Accept by `call_id`, or by `caller_id` for the newest ringing call.
    Accepting a call that is no longer ringing returns it unchanged.
    """
    return await service_accept_call(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.post("/reject", response_model=CallResponse)
async def reject_call(
    request: CallIdRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_reject_call(
        db, current_user=current_user, call_id=request.call_id, broadcaster=broadcaster
    )


@router.post("/end", response_model=CallResponse)
async def end_call(
    request: CallIdRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_end_call(
        db, current_user=current_user, call_id=request.call_id, broadcaster=broadcaster
    )


@router.post("/missed", response_model=CallResponse)
async def mark_missed(
    request: CallIdRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return await service_mark_call_missed(
        db, current_user=current_user, call_id=request.call_id, broadcaster=broadcaster
    )


@router.post("/signal", response_model=SignalResponse)
async def relay_signal(
    request: SignalRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Blind relay of WebRTC offer/answer/ICE payloads on `private-call-{low}-{high}`."""
    return await service_relay_signal(
        db, current_user=current_user, request=request, broadcaster=broadcaster
    )


@router.get("", response_model=CallListResponse)
async def list_calls(
    active: Optional[bool] = Query(None, description="true: ringing/connected only, false: finished only"),
    limit: int = Query(50, ge=1, le=100, example=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return service_list_calls(db, current_user=current_user, active=active, limit=limit)


@router.get("/{call_id}", response_model=CallResponse)
async def get_call(
    call_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return service_get_call(db, current_user=current_user, call_id=call_id)
