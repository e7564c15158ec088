"""Conditional reads and writes of appointments inside their conversation.

Every query is scoped by the owning conversation and by the party that owns
the appointment, so a caller can never read or overwrite a record that is
not theirs.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, null
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment import Appointment
from app.services.transition_rules import AppointmentState

logger = logging.getLogger(__name__)


async def _find(db: AsyncSession, *criteria) -> Optional[AppointmentState]:
    result = await db.execute(select(Appointment).where(*criteria))
    appointment = result.scalar_one_or_none()
    if appointment is None:
        return None
    return AppointmentState.from_model(appointment)


async def find_for_customer(
    db: AsyncSession,
    appointment_id: UUID,
    customer_id: UUID,
    conversation_id: Optional[UUID] = None,
) -> Optional[AppointmentState]:
    """Load an appointment only if ``customer_id`` owns it."""
    criteria = [Appointment.id == appointment_id, Appointment.customer_id == customer_id]
    if conversation_id is not None:
        criteria.append(Appointment.conversation_id == conversation_id)
    return await _find(db, *criteria)


async def find_for_business(
    db: AsyncSession,
    appointment_id: UUID,
    business_id: UUID,
    conversation_id: Optional[UUID] = None,
) -> Optional[AppointmentState]:
    """Load an appointment only if it was booked with ``business_id``."""
    criteria = [Appointment.id == appointment_id, Appointment.business_id == business_id]
    if conversation_id is not None:
        criteria.append(Appointment.conversation_id == conversation_id)
    return await _find(db, *criteria)


async def get(db: AsyncSession, conversation_id: UUID, appointment_id: UUID) -> Optional[AppointmentState]:
    """Re-read an appointment by identity, bypassing any cached ORM state."""
    result = await db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id, Appointment.conversation_id == conversation_id)
        .execution_options(populate_existing=True)
    )
    appointment = result.scalar_one_or_none()
    return AppointmentState.from_model(appointment) if appointment else None


async def replace_if_unchanged(db: AsyncSession, current: AppointmentState, new: AppointmentState) -> int:
    """Overwrite the mutable fields of ``current`` with those of ``new``.

    The row is matched on identity, owners and the status ``current`` was
    read with, so a concurrent transition that already moved the appointment
    makes this a zero-row update. Returns the driver's row count; the caller
    owns the transaction.
    """
    suggested = new.suggested_time.to_json() if new.suggested_time is not None else null()
    stmt = (
        update(Appointment)
        .where(
            Appointment.id == current.id,
            Appointment.conversation_id == current.conversation_id,
            Appointment.customer_id == current.customer_id,
            Appointment.business_id == current.business_id,
            Appointment.status == current.status,
        )
        .values(
            status=new.status,
            preferred_date=new.preferred_date,
            preferred_time=new.preferred_time,
            suggested_time=suggested,
            was_rescheduled=new.was_rescheduled,
            updated_at=new.updated_at,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    logger.debug("Conditional replace of appointment %s matched %s row(s)", current.id, result.rowcount)
    return result.rowcount
