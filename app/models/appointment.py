"""Appointment model: the negotiable booking inside a conversation."""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Enum as SQLEnum, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from app.core.database import Base


class AppointmentStatus(str, enum.Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    CANCELED = "canceled"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id"), nullable=False, index=True)

    # Customer info, captured when the request was made
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    service = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(
        SQLEnum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.REQUESTED,
        nullable=False,
        index=True,
    )
    preferred_date = Column(String, nullable=False)  # "2024-05-01"
    preferred_time = Column(String, nullable=False)  # "10:00"
    # {"date": ..., "time": ..., "suggested_at": ...}; NULL when no proposal is open
    suggested_time = Column(JSON(none_as_null=True), nullable=True)
    was_rescheduled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="appointments")
