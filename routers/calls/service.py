"""Call signaling service layer.

A call row moves ``ringing -> connected | rejected | ended | missed`` and
``connected -> ended``. Every transition is a compare-and-set UPDATE on the
current status, so a duplicated accept or end (common with at-most-once,
unordered signaling) is a harmless no-op reported as ``changed: False``.

Every operation checks that the requester is the caller or the receiver
before touching the row. Call channels are derivable from user ids alone and
give no protection of their own.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from config import CALL_RING_TIMEOUT_SECONDS, CALLS_ENABLED
from core.channels import call_channel, user_channel
from core.users import display_name, get_user_by_id, is_blocked_between, user_summary
from utils.logging_helpers import log_info
from utils.pusher_client import publish_event

from . import repository as calls_repository

logger = logging.getLogger(__name__)

CALL_TYPES = ("voice", "video")
ACTIVE_STATUSES = calls_repository.ACTIVE_STATUSES

EVENT_INCOMING_CALL = "incoming-call"
EVENT_CALL_ACCEPTED = "call-accepted"
EVENT_CALL_REJECTED = "call-rejected"
EVENT_CALL_ENDED = "call-ended"
EVENT_CALL_MISSED = "call-missed"


def _utcnow() -> datetime:
    return datetime.utcnow()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _ring_cutoff(now: datetime) -> datetime:
    return now - timedelta(seconds=CALL_RING_TIMEOUT_SECONDS)


def _serialize_call(call) -> Dict[str, Any]:
    return {
        "id": call.id,
        "caller_id": call.caller_id,
        "receiver_id": call.receiver_id,
        "caller": user_summary(call.caller),
        "receiver": user_summary(call.receiver),
        "call_type": call.call_type,
        "status": call.status,
        "caller_peer_id": call.caller_peer_id,
        "receiver_peer_id": call.receiver_peer_id,
        "created_at": _iso(call.created_at),
        "started_at": _iso(call.started_at),
        "ended_at": _iso(call.ended_at),
        "duration": call.duration,
    }


def _other_party(call, user_id: int) -> int:
    return call.receiver_id if user_id == call.caller_id else call.caller_id


def _require_calls_enabled():
    if not CALLS_ENABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Calls are disabled")


def _load_call_for_participant(db, *, call_id: int, current_user):
    call = calls_repository.get_call(db, call_id=call_id)
    if not call:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    if current_user.account_id not in (call.caller_id, call.receiver_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant in this call")
    return call


def _expire_if_unanswered(db, call, now: datetime):
    """Lazy ring timeout: an unanswered call past the timeout becomes ``missed``."""
    if call.status != "ringing":
        return call
    changed = calls_repository.expire_ringing_calls(
        db, created_before=_ring_cutoff(now), now=now, call_id=call.id
    )
    if changed:
        db.commit()
        db.refresh(call)
        log_info(logger, "Call marked missed after ring timeout", call_id=call.id)
    return call


async def initiate_call(db, *, current_user, request, broadcaster):
    _require_calls_enabled()

    if request.receiver_id is None or not (request.caller_peer_id or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="receiver_id and caller_peer_id are required",
        )
    if request.call_type not in CALL_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"call_type must be one of {', '.join(CALL_TYPES)}",
        )
    if request.receiver_id == current_user.account_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot call yourself")

    receiver = get_user_by_id(db, account_id=request.receiver_id)
    if not receiver:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receiver not found")
    if is_blocked_between(db, current_user.account_id, receiver.account_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")

    call = calls_repository.create_call(
        db,
        caller_id=current_user.account_id,
        receiver_id=receiver.account_id,
        call_type=request.call_type,
        caller_peer_id=request.caller_peer_id.strip(),
        created_at=_utcnow(),
    )
    db.commit()
    db.refresh(call)

    log_info(
        logger,
        "Call initiated",
        user_id=current_user.account_id,
        call_id=call.id,
        receiver_id=receiver.account_id,
        call_type=call.call_type,
    )

    broadcast = await publish_event(
        broadcaster,
        user_channel(receiver.account_id),
        EVENT_INCOMING_CALL,
        {
            "callId": call.id,
            "callType": call.call_type,
            "caller": user_summary(current_user),
            "callerPeerId": call.caller_peer_id,
            "status": "ringing",
            "createdAt": _iso(call.created_at),
        },
    )
    return {"call": _serialize_call(call), "changed": True, "broadcast": broadcast}


async def accept_call(db, *, current_user, request, broadcaster):
    _require_calls_enabled()

    if not (request.receiver_peer_id or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="receiver_peer_id is required")

    if request.call_id is not None:
        call = _load_call_for_participant(db, call_id=request.call_id, current_user=current_user)
    elif request.caller_id is not None:
        call = calls_repository.get_latest_ringing_call(
            db, caller_id=request.caller_id, receiver_id=current_user.account_id
        )
        if not call:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No ringing call from this caller")
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide call_id or caller_id")

    if call.receiver_id != current_user.account_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the receiver can accept this call")

    now = _utcnow()
    _expire_if_unanswered(db, call, now)

    changed = (
        calls_repository.transition_call(
            db,
            call_id=call.id,
            from_statuses=("ringing",),
            values={
                "status": "connected",
                "started_at": now,
                "receiver_peer_id": request.receiver_peer_id.strip(),
            },
        )
        > 0
    )
    db.commit()
    db.refresh(call)

    broadcast = False
    if changed:
        log_info(logger, "Call accepted", user_id=current_user.account_id, call_id=call.id)
        broadcast = await publish_event(
            broadcaster,
            user_channel(call.caller_id),
            EVENT_CALL_ACCEPTED,
            {
                "callId": call.id,
                "receiverId": call.receiver_id,
                "receiverName": display_name(current_user),
                "receiverPeerId": call.receiver_peer_id,
                "startedAt": _iso(call.started_at),
            },
        )
    return {"call": _serialize_call(call), "changed": changed, "broadcast": broadcast}


async def reject_call(db, *, current_user, call_id: int, broadcaster):
    _require_calls_enabled()
    call = _load_call_for_participant(db, call_id=call_id, current_user=current_user)
    if call.receiver_id != current_user.account_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the receiver can reject this call")

    now = _utcnow()
    _expire_if_unanswered(db, call, now)

    changed = (
        calls_repository.transition_call(
            db,
            call_id=call.id,
            from_statuses=("ringing",),
            values={"status": "rejected", "ended_at": now, "duration": 0},
        )
        > 0
    )
    db.commit()
    db.refresh(call)

    broadcast = False
    if changed:
        log_info(logger, "Call rejected", user_id=current_user.account_id, call_id=call.id)
        broadcast = await publish_event(
            broadcaster,
            user_channel(call.caller_id),
            EVENT_CALL_REJECTED,
            {"callId": call.id, "receiverId": call.receiver_id},
        )
    return {"call": _serialize_call(call), "changed": changed, "broadcast": broadcast}


async def end_call(db, *, current_user, call_id: int, broadcaster):
    _require_calls_enabled()
    call = _load_call_for_participant(db, call_id=call_id, current_user=current_user)

    now = _utcnow()
    _expire_if_unanswered(db, call, now)

    changed = False
    if call.status == "connected":
        # started_at is fixed once connected, so the duration is final here
        duration = max(0, int((now - call.started_at).total_seconds())) if call.started_at else 0
        changed = (
            calls_repository.transition_call(
                db,
                call_id=call.id,
                from_statuses=("connected",),
                values={"status": "ended", "ended_at": now, "duration": duration},
            )
            > 0
        )
    elif call.status == "ringing":
        changed = (
            calls_repository.transition_call(
                db,
                call_id=call.id,
                from_statuses=("ringing",),
                values={"status": "ended", "ended_at": now, "duration": 0},
            )
            > 0
        )
    db.commit()
    db.refresh(call)

    broadcast = False
    if changed:
        log_info(
            logger,
            "Call ended",
            user_id=current_user.account_id,
            call_id=call.id,
            duration=call.duration,
        )
        broadcast = await publish_event(
            broadcaster,
            user_channel(_other_party(call, current_user.account_id)),
            EVENT_CALL_ENDED,
            {
                "callId": call.id,
                "endedBy": current_user.account_id,
                "duration": call.duration,
                "endedAt": _iso(call.ended_at),
            },
        )
    return {"call": _serialize_call(call), "changed": changed, "broadcast": broadcast}


async def mark_call_missed(db, *, current_user, call_id: int, broadcaster):
    _require_calls_enabled()
    call = _load_call_for_participant(db, call_id=call_id, current_user=current_user)

    now = _utcnow()
    changed = (
        calls_repository.transition_call(
            db,
            call_id=call.id,
            from_statuses=("ringing",),
            values={"status": "missed", "ended_at": now, "duration": 0},
        )
        > 0
    )
    db.commit()
    db.refresh(call)

    broadcast = False
    if changed:
        broadcast = await publish_event(
            broadcaster,
            user_channel(_other_party(call, current_user.account_id)),
            EVENT_CALL_MISSED,
            {"callId": call.id, "callerId": call.caller_id, "callType": call.call_type},
        )
    return {"call": _serialize_call(call), "changed": changed, "broadcast": broadcast}


async def relay_signal(db, *, current_user, request, broadcaster):
    """
    Relay an offer/answer/ICE candidate to the call's signaling channel.
    The payload is forwarded verbatim. Consumers must tolerate duplicates and
    out-of-order delivery.
    """
    _require_calls_enabled()
    call = _load_call_for_participant(db, call_id=request.call_id, current_user=current_user)
    _expire_if_unanswered(db, call, _utcnow())
    if call.status not in ACTIVE_STATUSES:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Call is {call.status}")

    channel = call_channel(call.caller_id, call.receiver_id)
    relayed = await publish_event(
        broadcaster,
        channel,
        request.type,
        {
            "callId": call.id,
            "senderId": current_user.account_id,
            "type": request.type,
            "payload": request.payload,
        },
    )
    return {"call_id": call.id, "channel": channel, "type": request.type, "relayed": relayed}


def get_call(db, *, current_user, call_id: int):
    call = _load_call_for_participant(db, call_id=call_id, current_user=current_user)
    _expire_if_unanswered(db, call, _utcnow())
    return {"call": _serialize_call(call), "changed": False, "broadcast": False}


def list_calls(db, *, current_user, active: Optional[bool], limit: int):
    now = _utcnow()
    expired = calls_repository.expire_ringing_calls(
        db, created_before=_ring_cutoff(now), now=now, user_id=current_user.account_id
    )
    if expired:
        db.commit()
    calls = calls_repository.list_calls_for_user(
        db, user_id=current_user.account_id, active=active, limit=limit
    )
    return {"calls": [_serialize_call(call) for call in calls]}


def has_active_call(db, *, user_a: int, user_b: int) -> bool:
    return calls_repository.has_active_call_between(
        db, user_a=user_a, user_b=user_b, created_after=_ring_cutoff(_utcnow())
    )
