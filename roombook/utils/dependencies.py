from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from functools import lru_cache
from typing import Optional

from ..clock import Clock, system_clock
from ..schemas.actor import Actor
from ..exceptions import Forbidden
from ..services.notification_service import NotificationSender, get_notification_sender
from .logging_config import actor_id_var
from .security import decode_actor_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Actor:
    """Resolve the caller from the bearer token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or not credentials.credentials:
        raise credentials_exception

    actor = decode_actor_token(credentials.credentials)
    if actor is None:
        raise credentials_exception

    actor_id_var.set(actor.id)
    return actor


def get_clock() -> Clock:
    return system_clock


@lru_cache()
def get_notifier() -> NotificationSender:
    """Process-wide notification sender, chosen from settings on first use"""
    return get_notification_sender()


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only administrators may pass"""
    if not actor.is_admin:
        raise Forbidden("Administrator access required")
    return actor
