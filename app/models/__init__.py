"""Import every model so relationships resolve and Base.metadata is complete."""

from app.models.business import Business  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.conversation import Conversation, Message, SenderType  # noqa: F401
from app.models.appointment import Appointment, AppointmentStatus  # noqa: F401
from app.models.notification_outbox import NotificationIntent, IntentKind, OutboxStatus  # noqa: F401
