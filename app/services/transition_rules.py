"""Appointment negotiation state machine.

Pure decision logic: no I/O, no clock reads. Request parsing turns the raw
fields of a status update into exactly one ``Command`` here, and ``apply``
computes the resulting appointment. The executor writes that result with a
single conditional replace.

    requested ──confirm──▶ confirmed ──propose──▶ reschedule_requested
        │                      │                        │
        │                      │                        ├─accept──▶ confirmed (was_rescheduled)
        └──────cancel──────────┴──────cancel────────────┴─reject/cancel──▶ canceled (terminal)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from app.core.exceptions import ConflictError, ValidationError
from app.models.appointment import AppointmentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuggestedTime:
    date: str
    time: str
    suggested_at: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        return {"date": self.date, "time": self.time, "suggested_at": self.suggested_at}

    @classmethod
    def from_json(cls, data: dict | None) -> Optional["SuggestedTime"]:
        if not data:
            return None
        return cls(
            date=data.get("date", ""),
            time=data.get("time", ""),
            suggested_at=data.get("suggested_at") or data.get("suggestedAt"),
        )


@dataclass(frozen=True)
class AppointmentState:
    """Immutable snapshot of an appointment as read from the store."""
    id: UUID
    conversation_id: UUID
    customer_id: UUID
    business_id: UUID
    service: str
    customer_name: str
    status: AppointmentStatus
    preferred_date: str
    preferred_time: str
    suggested_time: Optional[SuggestedTime] = None
    was_rescheduled: bool = False
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentState":
        return cls(
            id=appointment.id,
            conversation_id=appointment.conversation_id,
            customer_id=appointment.customer_id,
            business_id=appointment.business_id,
            service=appointment.service,
            customer_name=appointment.customer_name,
            status=AppointmentStatus(appointment.status),
            preferred_date=appointment.preferred_date,
            preferred_time=appointment.preferred_time,
            suggested_time=SuggestedTime.from_json(appointment.suggested_time),
            was_rescheduled=bool(appointment.was_rescheduled),
            customer_email=appointment.customer_email,
            customer_phone=appointment.customer_phone,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class Command(str, enum.Enum):
    CONFIRM = "confirm"                      # re-affirm the current preferred time
    RETIME = "retime"                        # confirm at a customer-supplied time
    ACCEPT_RESCHEDULE = "accept_reschedule"  # take the business's suggested time
    CANCEL = "cancel"                        # includes rejecting a suggestion
    PROPOSE = "propose"                      # business suggests another time


@dataclass(frozen=True)
class Transition:
    command: Command
    origin: AppointmentStatus
    target: AppointmentStatus
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    suggested_time: Optional[SuggestedTime] = None
    reject_suggestion: bool = False


def parse_status(value: Any) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value!r}")


def _ensure_not_terminal(current: AppointmentState) -> None:
    if current.status == AppointmentStatus.CANCELED:
        raise ConflictError("Appointment is canceled and can no longer change")


def decide(
    current: AppointmentState,
    status: Any,
    preferred_date: Optional[str] = None,
    preferred_time: Optional[str] = None,
    reject_suggestion: bool = False,
    is_reschedule_acceptance: bool = False,
) -> Transition:
    """Resolve a customer status request into a single command.

    Raises ValidationError for malformed requests and ConflictError when the
    appointment's current state does not allow the move.
    """
    target = parse_status(status)
    _ensure_not_terminal(current)

    preferred_date = (preferred_date or "").strip() or None
    preferred_time = (preferred_time or "").strip() or None
    has_date = preferred_date is not None
    has_time = preferred_time is not None

    if reject_suggestion and target != AppointmentStatus.CANCELED:
        raise ValidationError("Rejecting a suggested time cancels the appointment; send status 'canceled'")

    if target == AppointmentStatus.CANCELED:
        return Transition(
            command=Command.CANCEL,
            origin=current.status,
            target=target,
            reject_suggestion=reject_suggestion,
        )

    if target == AppointmentStatus.CONFIRMED:
        accepting = is_reschedule_acceptance or current.status == AppointmentStatus.RESCHEDULE_REQUESTED
        if accepting:
            if current.status != AppointmentStatus.RESCHEDULE_REQUESTED:
                raise ConflictError("There is no suggested time to accept")
            if not (has_date and has_time):
                raise ValidationError("date and time required to accept a reschedule")
            return Transition(
                command=Command.ACCEPT_RESCHEDULE,
                origin=current.status,
                target=target,
                preferred_date=preferred_date,
                preferred_time=preferred_time,
            )

        if has_date != has_time:
            raise ValidationError("preferred_date and preferred_time must be supplied together")
        if has_date:
            return Transition(
                command=Command.RETIME,
                origin=current.status,
                target=target,
                preferred_date=preferred_date,
                preferred_time=preferred_time,
            )
        return Transition(command=Command.CONFIRM, origin=current.status, target=target)

    if target == AppointmentStatus.RESCHEDULE_REQUESTED:
        raise ValidationError("Only the business can propose a new time")

    raise ValidationError(f"Cannot move an appointment back to '{target.value}'")


def decide_proposal(current: AppointmentState, date: Optional[str], time: Optional[str]) -> Transition:
    """Resolve a business request to suggest an alternative time."""
    _ensure_not_terminal(current)
    date = (date or "").strip()
    time = (time or "").strip()
    if not date or not time:
        raise ValidationError("suggestedTime must include date and time")
    return Transition(
        command=Command.PROPOSE,
        origin=current.status,
        target=AppointmentStatus.RESCHEDULE_REQUESTED,
        suggested_time=SuggestedTime(date=date, time=time),
    )


def apply(current: AppointmentState, transition: Transition, now: datetime) -> AppointmentState:
    """Return the appointment as it must look after ``transition``.

    The suggested time is cleared by every command except PROPOSE, and
    was_rescheduled only ever flips from False to True.
    """
    if transition.origin != current.status:
        raise ConflictError("Appointment changed since the transition was decided")

    command = transition.command
    changes: dict[str, Any] = {"status": transition.target, "updated_at": now, "suggested_time": None}

    if command in (Command.RETIME, Command.ACCEPT_RESCHEDULE):
        changes["preferred_date"] = transition.preferred_date
        changes["preferred_time"] = transition.preferred_time
    if command == Command.ACCEPT_RESCHEDULE:
        changes["was_rescheduled"] = True
    if command == Command.PROPOSE:
        suggested = transition.suggested_time
        changes["suggested_time"] = replace(suggested, suggested_at=suggested.suggested_at or now.isoformat())

    return replace(current, **changes)


def invariant_violations(state: AppointmentState, before: Optional[AppointmentState] = None) -> list[str]:
    """List every invariant ``state`` breaks; empty when it is consistent.

    Pass ``before`` (the snapshot the transition started from) to also check
    how was_rescheduled changed.
    """
    problems = []
    has_suggestion = state.suggested_time is not None
    if has_suggestion != (state.status == AppointmentStatus.RESCHEDULE_REQUESTED):
        problems.append("suggested_time must be present only while reschedule_requested")
    if state.status != AppointmentStatus.CANCELED and not (state.preferred_date and state.preferred_time):
        problems.append("preferred_date and preferred_time are required")
    if before is not None:
        if before.was_rescheduled and not state.was_rescheduled:
            problems.append("was_rescheduled cannot be reset")
        accepted = (
            before.status == AppointmentStatus.RESCHEDULE_REQUESTED
            and state.status == AppointmentStatus.CONFIRMED
        )
        if state.was_rescheduled and not before.was_rescheduled and not accepted:
            problems.append("was_rescheduled is only set when a suggested time is accepted")
    return problems


def same_observable_state(a: AppointmentState, b: AppointmentState) -> bool:
    """Compare everything a caller can see except the write timestamp."""
    return (
        a.status == b.status
        and a.preferred_date == b.preferred_date
        and a.preferred_time == b.preferred_time
        and (a.suggested_time is None) == (b.suggested_time is None)
        and (a.suggested_time is None or (a.suggested_time.date, a.suggested_time.time)
             == (b.suggested_time.date, b.suggested_time.time))
        and a.was_rescheduled == b.was_rescheduled
    )
