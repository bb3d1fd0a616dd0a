import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Request, HTTPException, status
from jose import jwt, JWTError

from config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS

logger = logging.getLogger(__name__)


def create_token(data: dict) -> str:
    """Sign `data` (must carry user_id) with an expiry and a unique jti."""
    claims = dict(data)
    claims["exp"] = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRY_HOURS)
    claims["jti"] = str(uuid.uuid4())
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict | None:
    """Decoded claims, or None when the signature or expiry check fails."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected token: {e}")
        return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(request: Request) -> int:
    """
    FastAPI dependency: the owner id from the Bearer token. Every routine,
    log, goal and notification query is scoped to it.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token:
        raise _unauthorized("Missing or invalid Authorization header")

    claims = verify_token(token)
    if claims is None:
        raise _unauthorized("Invalid or expired token")

    user_id = claims.get("user_id")
    if user_id is None:
        raise _unauthorized("Token payload missing user_id")
    return user_id
