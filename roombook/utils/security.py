from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt

from ..config import settings
from ..schemas.actor import Actor

ADMIN_ROLES = {"admin", "system_owner"}


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Tokens are normally minted by the identity service; this exists for
    local development and tests.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict]:
    """Verify an access token and return payload"""
    payload = decode_token(token)
    if payload and payload.get("type") == "access":
        return payload
    return None


def actor_from_claims(payload: dict) -> Optional[Actor]:
    """Build the Actor from verified claims; None if the subject is missing"""
    subject = payload.get("sub")
    if not subject:
        return None

    role = str(payload.get("role", "")).lower()
    return Actor(
        id=str(subject),
        name=payload.get("name") or "",
        email=payload.get("email"),
        is_admin=bool(payload.get("is_admin")) or role in ADMIN_ROLES,
    )


def decode_actor_token(token: str) -> Optional[Actor]:
    """Verify a bearer token and return the caller it names"""
    payload = verify_access_token(token)
    if payload is None:
        return None
    return actor_from_claims(payload)
