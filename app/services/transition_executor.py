"""Apply a decided transition to the store.

Confirming, cancelling, accepting a suggestion and proposing one all go
through the same path: compute the new appointment with
``transition_rules.apply`` and write it back with one conditional replace.
Notification intents for the change are added to the outbox in the same
transaction, so they exist if and only if the appointment change committed.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, WriteFailure
from app.models.appointment import AppointmentStatus
from app.models.notification_outbox import IntentKind, NotificationIntent, OutboxStatus
from app.services import appointment_store
from app.services.transition_rules import (
    AppointmentState,
    Command,
    Transition,
    apply,
    invariant_violations,
    same_observable_state,
)

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    appointment: AppointmentState
    intent_ids: list[UUID] = field(default_factory=list)


def build_intents(
    before: AppointmentState,
    after: AppointmentState,
    transition: Transition,
    actor_id: UUID,
    send_emails: bool = True,
) -> list[NotificationIntent]:
    """Describe the notifications a committed transition should trigger."""
    base = {
        "conversation_id": str(after.conversation_id),
        "appointment_id": str(after.id),
        "customer_id": str(after.customer_id),
        "business_id": str(after.business_id),
        "actor_id": str(actor_id),
        "service": after.service,
        "customer_name": after.customer_name,
        "customer_phone": after.customer_phone,
    }

    if transition.command == Command.ACCEPT_RESCHEDULE:
        kind = IntentKind.RESCHEDULE_ACCEPTED
        payload = {
            **base,
            "original_date": before.preferred_date,
            "original_time": before.preferred_time,
            "new_date": after.preferred_date,
            "new_time": after.preferred_time,
        }
    elif transition.command == Command.CANCEL:
        kind = IntentKind.APPOINTMENT_CANCELED
        payload = {
            **base,
            "date": after.preferred_date,
            "time": after.preferred_time,
            "send_emails": send_emails,
            "rejected_suggestion": transition.reject_suggestion,
        }
    elif transition.command == Command.PROPOSE:
        kind = IntentKind.RESCHEDULE_PROPOSED
        payload = {
            **base,
            "original_date": before.preferred_date,
            "original_time": before.preferred_time,
            "new_date": after.suggested_time.date,
            "new_time": after.suggested_time.time,
        }
    else:
        return []

    return [
        NotificationIntent(
            id=uuid.uuid4(),
            kind=kind.value,
            conversation_id=after.conversation_id,
            appointment_id=after.id,
            payload=payload,
            status=OutboxStatus.PENDING.value,
        )
    ]


async def execute(
    db: AsyncSession,
    current: AppointmentState,
    transition: Transition,
    actor_id: UUID,
    send_emails: bool = True,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Write ``transition`` and its outbox intents, or raise.

    Zero matched rows is resolved with a fresh read: the appointment is gone
    (NotFoundError), another request moved it first (ConflictError), or it
    already holds exactly the state we meant to write, which counts as
    success. Anything else is a WriteFailure.
    """
    now = now or datetime.utcnow()
    updated = apply(current, transition, now)

    problems = invariant_violations(updated, before=current)
    if problems:
        logger.error("Refusing to write appointment %s: %s", current.id, "; ".join(problems))
        raise WriteFailure("Transition would leave the appointment inconsistent")

    try:
        matched = await appointment_store.replace_if_unchanged(db, current, updated)
        if matched == 0:
            await db.rollback()
            return await _resolve_unmatched(db, current, updated)

        intents = build_intents(current, updated, transition, actor_id, send_emails)
        db.add_all(intents)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Appointment %s: %s -> %s (%s)",
        current.id,
        transition.origin.value,
        transition.target.value,
        transition.command.value,
    )
    return TransitionResult(appointment=updated, intent_ids=[intent.id for intent in intents])


async def _resolve_unmatched(
    db: AsyncSession, current: AppointmentState, updated: AppointmentState
) -> TransitionResult:
    stored = await appointment_store.get(db, current.conversation_id, current.id)

    if stored is None:
        raise NotFoundError("Appointment not found")
    if same_observable_state(stored, updated):
        logger.info("Appointment %s already in requested state; treating write as no-op", current.id)
        return TransitionResult(appointment=stored)
    if stored.status != current.status:
        logger.warning(
            "Appointment %s moved to %s while %s was being applied",
            current.id,
            stored.status.value,
            updated.status.value,
        )
        if stored.status == AppointmentStatus.CANCELED:
            raise ConflictError("Appointment is canceled and can no longer change")
        raise ConflictError("Appointment was changed by another request")

    raise WriteFailure("Appointment update was not applied")
