"""Calls repository layer."""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from models import Call

ACTIVE_STATUSES = ("ringing", "connected")


def create_call(
    db: Session,
    *,
    caller_id: int,
    receiver_id: int,
    call_type: str,
    caller_peer_id: str,
    created_at: datetime,
) -> Call:
    call = Call(
        caller_id=caller_id,
        receiver_id=receiver_id,
        call_type=call_type,
        caller_peer_id=caller_peer_id,
        status="ringing",
        created_at=created_at,
    )
    db.add(call)
    return call


def get_call(db: Session, *, call_id: int) -> Optional[Call]:
    return db.query(Call).filter(Call.id == call_id).first()


def get_latest_ringing_call(db: Session, *, caller_id: int, receiver_id: int) -> Optional[Call]:
    return (
        db.query(Call)
        .filter(
            Call.caller_id == caller_id,
            Call.receiver_id == receiver_id,
            Call.status == "ringing",
        )
        .order_by(Call.created_at.desc(), Call.id.desc())
        .first()
    )


def transition_call(
    db: Session, *, call_id: int, from_statuses: Sequence[str], values: Dict
) -> int:
    """Compare-and-set on status. Returns the number of rows changed (0 or 1)."""
    return (
        db.query(Call)
        .filter(Call.id == call_id, Call.status.in_(list(from_statuses)))
        .update({getattr(Call, key): value for key, value in values.items()}, synchronize_session=False)
    )


def expire_ringing_calls(
    db: Session,
    *,
    created_before: datetime,
    now: datetime,
    call_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> int:
    query = db.query(Call).filter(Call.status == "ringing", Call.created_at <= created_before)
    if call_id is not None:
        query = query.filter(Call.id == call_id)
    if user_id is not None:
        query = query.filter(or_(Call.caller_id == user_id, Call.receiver_id == user_id))
    return query.update(
        {Call.status: "missed", Call.ended_at: now, Call.duration: 0},
        synchronize_session=False,
    )


def list_calls_for_user(
    db: Session, *, user_id: int, active: Optional[bool], limit: int
) -> List[Call]:
    query = db.query(Call).filter(or_(Call.caller_id == user_id, Call.receiver_id == user_id))
    if active is True:
        query = query.filter(Call.status.in_(ACTIVE_STATUSES))
    elif active is False:
        query = query.filter(Call.status.notin_(ACTIVE_STATUSES))
    return query.order_by(Call.created_at.desc(), Call.id.desc()).limit(limit).all()


def has_active_call_between(db: Session, *, user_a: int, user_b: int, created_after: datetime) -> bool:
    """A connected call, or a ringing one still inside the ring timeout."""
    pair = or_(
        and_(Call.caller_id == user_a, Call.receiver_id == user_b),
        and_(Call.caller_id == user_b, Call.receiver_id == user_a),
    )
    row = (
        db.query(Call.id)
        .filter(
            pair,
            or_(
                Call.status == "connected",
                and_(Call.status == "ringing", Call.created_at > created_after),
            ),
        )
        .first()
    )
    return row is not None
