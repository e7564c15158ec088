"""Authenticate callers and authorize them against an appointment.

Runs before any transition logic. A caller who does not own the target
appointment gets the same NotFoundError as a caller asking for an
appointment that does not exist.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthenticationError, NotFoundError, RateLimitedError
from app.services import appointment_store
from app.services.auth import decode_access_token
from app.services.rate_limit_service import RateLimiter
from app.services.transition_rules import AppointmentState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    id: UUID
    kind: str = "user"  # "user" or "business"
    business_id: Optional[UUID] = None


def _parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def resolve_caller(token: Optional[str]) -> Caller:
    """Turn a bearer token into a Caller, or raise AuthenticationError."""
    if not token:
        raise AuthenticationError("Authorization header missing or invalid")

    payload = decode_access_token(token)
    if not payload:
        raise AuthenticationError("Could not validate credentials")

    kind = payload.get("type") or "user"
    if kind == "business":
        business_id = _parse_uuid(payload.get("businessId") or payload.get("business_id") or payload.get("sub"))
        if business_id is None:
            raise AuthenticationError("Invalid token payload")
        return Caller(id=business_id, kind="business", business_id=business_id)

    user_id = _parse_uuid(payload.get("sub") or payload.get("userId"))
    if user_id is None:
        raise AuthenticationError("Invalid token payload")
    return Caller(id=user_id, kind="user")


def _check_rate(caller: Caller, rate_limiter: Optional[RateLimiter]) -> None:
    if rate_limiter is not None and not rate_limiter.allow(f"{caller.kind}:{caller.id}"):
        raise RateLimitedError("Too many appointment updates; try again shortly")


async def authorize_customer(
    db: AsyncSession,
    caller: Caller,
    appointment_id: UUID,
    conversation_id: Optional[UUID] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> AppointmentState:
    """Load the appointment if ``caller`` is the customer who booked it."""
    if caller.kind != "user":
        raise NotFoundError("Appointment not found or does not belong to this user")
    _check_rate(caller, rate_limiter)

    appointment = await appointment_store.find_for_customer(db, appointment_id, caller.id, conversation_id)
    if appointment is None:
        logger.info("Appointment %s not visible to user %s", appointment_id, caller.id)
        raise NotFoundError("Appointment not found or does not belong to this user")
    return appointment


async def authorize_business(
    db: AsyncSession,
    caller: Caller,
    appointment_id: UUID,
    conversation_id: Optional[UUID] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> AppointmentState:
    """Load the appointment if it was booked with the caller's business."""
    if caller.kind != "business" or caller.business_id is None:
        raise NotFoundError("Appointment not found")
    _check_rate(caller, rate_limiter)

    appointment = await appointment_store.find_for_business(
        db, appointment_id, caller.business_id, conversation_id
    )
    if appointment is None:
        logger.info("Appointment %s not visible to business %s", appointment_id, caller.business_id)
        raise NotFoundError("Appointment not found")
    return appointment
