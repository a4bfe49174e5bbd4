import logging
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from jose import ExpiredSignatureError, JWTError, jwt

from config import JWT_ACCESS_TOKEN_MINUTES, JWT_ALGORITHM, JWT_SECRET

logger = logging.getLogger(__name__)


def create_access_token(account_id: int, expires_minutes: int = JWT_ACCESS_TOKEN_MINUTES) -> str:
    """Issue a bearer token whose ``sub`` claim is the user's account id."""
    now = datetime.utcnow()
    payload = {
        "sub": str(account_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def validate_access_token(token: str) -> int:
    """
    Validate a bearer JWT and return the account id it was issued for.

    Raises:
        HTTPException: 401 if the token is expired, malformed or has no usable subject
    """
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except JWTError as e:
        logger.debug(f"JWT validation failed: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = claims.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    return int(subject)
