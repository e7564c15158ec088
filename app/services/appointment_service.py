"""Appointment negotiation use cases.

Handles the customer status update (confirm, accept or reject a suggested
time, cancel) and the business proposal of an alternative time:
gate → rules → executor. Notifications are only enqueued here; the
dispatcher sends them after the caller has its answer.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.schemas.appointment import ProposeTimeRequest, TransitionRequest
from app.services import request_gate, transition_executor, transition_rules
from app.services.rate_limit_service import RateLimiter
from app.services.request_gate import Caller
from app.services.transition_executor import TransitionResult

logger = logging.getLogger(__name__)


async def update_status(
    db: AsyncSession,
    caller: Caller,
    request: TransitionRequest,
    rate_limiter: Optional[RateLimiter] = None,
) -> TransitionResult:
    """Apply a customer's status request to one of their appointments."""
    current = await request_gate.authorize_customer(
        db, caller, request.appointment_id, request.conversation_id, rate_limiter
    )

    transition = transition_rules.decide(
        current,
        request.status,
        preferred_date=request.preferred_date,
        preferred_time=request.preferred_time,
        reject_suggestion=request.reject_suggestion,
        is_reschedule_acceptance=request.is_reschedule_acceptance,
    )
    logger.info(
        "User %s requested %s on appointment %s (currently %s)",
        caller.id,
        transition.command.value,
        current.id,
        current.status.value,
    )

    return await transition_executor.execute(
        db, current, transition, actor_id=caller.id, send_emails=request.send_emails
    )


async def propose_new_time(
    db: AsyncSession,
    caller: Caller,
    appointment_id,
    request: ProposeTimeRequest,
    rate_limiter: Optional[RateLimiter] = None,
) -> TransitionResult:
    """Let the business suggest an alternative time for the customer to accept."""
    current = await request_gate.authorize_business(
        db, caller, appointment_id, request.conversation_id, rate_limiter
    )

    transition = transition_rules.decide_proposal(
        current, request.suggested_time.date, request.suggested_time.time
    )
    logger.info(
        "Business %s proposed %s %s for appointment %s",
        caller.business_id,
        transition.suggested_time.date,
        transition.suggested_time.time,
        current.id,
    )

    return await transition_executor.execute(db, current, transition, actor_id=caller.id)
