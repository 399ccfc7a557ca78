"""Bearer token handling.

Tokens are HS256 JWTs whose `sub` claim is the user id. Issuing tokens at
login is outside this service; `create_access_token` exists for the seed
script and tests.
"""

from datetime import datetime, timedelta, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from loguru import logger
from sqlalchemy.orm import Session

from trailpulse.core.config import settings
from trailpulse.core.errors import Unauthorized
from trailpulse.db import get_db
from trailpulse.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int | str) -> str:
    user_id_str = str(user_id) if user_id is not None else ""
    if not user_id_str:
        raise ValueError("user_id cannot be None or empty")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id_str,
        "exp": now + timedelta(days=settings.auth_token_expire_days),
        "iat": now,
    }
    return jwt.encode(payload, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> str:
    """Verify a token and return its user id.

    Raises:
        Unauthorized: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, settings.auth_secret_key, algorithms=[settings.auth_algorithm])
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise Unauthorized("Invalid or expired token") from e
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Token missing user ID")
    return str(user_id)


def user_from_token(db: Session, token: str | None) -> User:
    if not token:
        raise Unauthorized("Access denied. No token provided.")
    user_id = decode_access_token(token)
    try:
        user = db.get(User, int(user_id))
    except ValueError:
        user = None
    if not user:
        logger.warning(f"Auth failed: user not found user_id={user_id}")
        raise Unauthorized("User not found")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: the authenticated user or 401."""
    token = credentials.credentials if credentials else None
    return user_from_token(db, token)
