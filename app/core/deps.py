"""FastAPI dependencies for authentication and collaborators."""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import get_session_factory
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.rate_limit_service import RateLimiter
from app.services.request_gate import Caller, resolve_caller

# auto_error=False so a missing header becomes our AuthenticationError (401)
# instead of FastAPI's 403
optional_security = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Caller:
    """Resolve the caller from the bearer token.

    Raises AuthenticationError if no token or invalid token.
    """
    token = credentials.credentials if credentials else None
    return resolve_caller(token)


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


def get_notification_dispatcher(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory=session_factory)
