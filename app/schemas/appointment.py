"""Pydantic schemas for appointment status transitions."""

from datetime import datetime
from uuid import UUID
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.appointment import AppointmentStatus


class TransitionRequest(BaseModel):
    """Customer request to move an appointment to a new status.

    Date/time keys are accepted in both snake_case and camelCase because
    existing clients send either.
    """
    appointment_id: UUID = Field(validation_alias=AliasChoices("appointmentId", "appointment_id"))
    conversation_id: Optional[UUID] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    status: str  # validated by the transition rules so bad values map to ValidationError
    preferred_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("preferred_date", "preferredDate")
    )
    preferred_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("preferred_time", "preferredTime")
    )
    reject_suggestion: bool = Field(
        default=False, validation_alias=AliasChoices("rejectSuggestion", "reject_suggestion")
    )
    is_reschedule_acceptance: bool = Field(
        default=False, validation_alias=AliasChoices("isRescheduleAcceptance", "is_reschedule_acceptance")
    )
    send_emails: bool = Field(default=True, validation_alias=AliasChoices("sendEmails", "send_emails"))


class SuggestedTimeIn(BaseModel):
    date: str  # "2024-05-03"
    time: str  # "14:00"


class ProposeTimeRequest(BaseModel):
    """Business request to propose an alternative time."""
    conversation_id: Optional[UUID] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    suggested_time: SuggestedTimeIn = Field(validation_alias=AliasChoices("suggestedTime", "suggested_time"))


class SuggestedTimeOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str
    time: str
    suggested_at: Optional[str] = None


class AppointmentOut(BaseModel):
    """Appointment fields returned after a successful transition."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: UUID
    conversation_id: UUID
    service: str
    status: AppointmentStatus
    preferred_date: str
    preferred_time: str
    customer_name: str
    customer_phone: Optional[str] = None
    suggested_time: Optional[SuggestedTimeOut] = None
    was_rescheduled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state) -> "AppointmentOut":
        suggested = None
        if state.suggested_time is not None:
            suggested = SuggestedTimeOut(
                date=state.suggested_time.date,
                time=state.suggested_time.time,
                suggested_at=state.suggested_time.suggested_at,
            )
        return cls(
            id=state.id,
            conversation_id=state.conversation_id,
            service=state.service,
            status=state.status,
            preferred_date=state.preferred_date,
            preferred_time=state.preferred_time,
            customer_name=state.customer_name,
            customer_phone=state.customer_phone,
            suggested_time=suggested,
            was_rescheduled=state.was_rescheduled,
            created_at=state.created_at,
            updated_at=state.updated_at,
        )


class ErrorOut(BaseModel):
    error: str
    detail: str
