import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from auth import validate_access_token
from core.users import get_user_by_id
from db import get_db
from utils.pusher_client import Broadcaster

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization token missing.")
    return auth_header.split(" ", 1)[1].strip()


def get_current_user(request: Request, db: Session = Depends(get_db)):
    """
    Resolve the authenticated user from the ``Authorization: Bearer`` header.
    Cookies are not consulted.
    """
    account_id = validate_access_token(_bearer_token(request))
    user = get_user_by_id(db, account_id=account_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    request.state.user_id = user.account_id
    return user


def get_broadcaster(request: Request) -> Broadcaster:
    """The process-wide broadcaster built at startup."""
    broadcaster = getattr(request.app.state, "broadcaster", None)
    if broadcaster is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime broadcaster not initialized",
        )
    return broadcaster
