"""Appointment negotiation endpoints."""

import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import get_current_caller, get_notification_dispatcher, get_rate_limiter
from app.schemas.appointment import AppointmentOut, ErrorOut, ProposeTimeRequest, TransitionRequest
from app.services import appointment_service
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.rate_limit_service import RateLimiter
from app.services.request_gate import Caller

router = APIRouter()
business_router = APIRouter()
logger = logging.getLogger(__name__)

_ERRORS = {code: {"model": ErrorOut} for code in (400, 401, 404, 409, 429, 500)}


@router.post("/update-status", response_model=AppointmentOut, responses=_ERRORS)
async def update_appointment_status(
    payload: TransitionRequest,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    rate_limiter: Optional[RateLimiter] = Depends(get_rate_limiter),
):
    """Confirm, accept or reject a suggested time, or cancel an appointment."""
    result = await appointment_service.update_status(db, caller, payload, rate_limiter)

    # Sent after the response; delivery is not part of this request's outcome
    if result.intent_ids:
        background_tasks.add_task(dispatcher.drain, result.intent_ids)

    return AppointmentOut.from_state(result.appointment)


@business_router.post(
    "/appointments/{appointment_id}/suggest-time",
    response_model=AppointmentOut,
    responses=_ERRORS,
)
async def suggest_new_time(
    appointment_id: UUID,
    payload: ProposeTimeRequest,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    rate_limiter: Optional[RateLimiter] = Depends(get_rate_limiter),
):
    """Propose an alternative time; the customer accepts or rejects it."""
    result = await appointment_service.propose_new_time(db, caller, appointment_id, payload, rate_limiter)

    if result.intent_ids:
        background_tasks.add_task(dispatcher.drain, result.intent_ids)

    return AppointmentOut.from_state(result.appointment)
