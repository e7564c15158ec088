"""Notification outbox model.

Rows are written in the same transaction as the appointment change they
describe and drained afterwards by the notification dispatcher.
"""

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
import uuid
import enum
from datetime import datetime
from app.core.database import Base


class IntentKind(str, enum.Enum):
    RESCHEDULE_ACCEPTED = "reschedule_accepted"
    APPOINTMENT_CANCELED = "appointment_canceled"
    RESCHEDULE_PROPOSED = "reschedule_proposed"


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    SENDING = "sending"  # claimed by a drain, outcome not yet recorded
    SENT = "sent"
    FAILED = "failed"


class NotificationIntent(Base):
    __tablename__ = "notification_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(String, nullable=False, index=True)  # IntentKind value
    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
