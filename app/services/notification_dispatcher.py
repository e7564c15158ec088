"""Best-effort delivery of appointment notifications.

Drains pending intents from the notification outbox: looks up the parties,
appends a system message to the conversation and sends emails. Each intent
is claimed, attempted once and ends up ``sent`` or ``failed``; nothing here is
retried and no exception escapes ``drain``.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.exceptions import NotificationFailure
from app.models.conversation import SenderType
from app.models.notification_outbox import IntentKind, NotificationIntent, OutboxStatus
from app.services import directory, message_log
from app.services.email_service import EmailService, email_service

logger = logging.getLogger(__name__)


class _Attempt:
    """Collects step failures for one intent so later steps still run."""

    def __init__(self, intent_id: UUID, kind: str):
        self.intent_id = intent_id
        self.kind = kind
        self.errors: list[str] = []

    async def step(self, label: str, action: Callable[[], Awaitable]):
        try:
            return await action()
        except Exception as e:
            logger.error(
                "Notification step '%s' failed for %s intent %s: %s",
                label,
                self.kind,
                self.intent_id,
                e,
            )
            self.errors.append(f"{label}: {e}")
            return None


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        email: Optional[EmailService] = None,
        base_url: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.email = email or email_service
        self.base_url = (base_url or settings.APP_BASE_URL).rstrip("/")
        self._handlers = {
            IntentKind.RESCHEDULE_ACCEPTED.value: self._reschedule_accepted,
            IntentKind.APPOINTMENT_CANCELED.value: self._appointment_canceled,
            IntentKind.RESCHEDULE_PROPOSED.value: self._reschedule_proposed,
        }

    async def drain(self, intent_ids: Optional[Iterable[UUID]] = None, limit: int = 50) -> dict:
        """Dispatch pending intents, oldest first.

        With ``intent_ids`` only those intents are considered. Each intent is
        claimed (pending -> sending) before anything is sent, so overlapping
        drains never deliver the same intent twice. Returns counts of sent and
        failed intents.
        """
        sent = failed = 0
        try:
            async with self.session_factory() as db:
                query = select(NotificationIntent).where(
                    NotificationIntent.status == OutboxStatus.PENDING.value
                )
                if intent_ids is not None:
                    query = query.where(NotificationIntent.id.in_(list(intent_ids)))
                query = query.order_by(NotificationIntent.created_at).limit(limit)

                result = await db.execute(query)
                pending = [(i.id, i.kind, dict(i.payload)) for i in result.scalars().all()]

                for intent_id, kind, payload in pending:
                    if not await self._claim(db, intent_id):
                        logger.debug("Intent %s already claimed by another drain", intent_id)
                        continue
                    if await self._dispatch_one(db, intent_id, kind, payload):
                        sent += 1
                    else:
                        failed += 1
        except Exception as e:
            logger.error("Notification outbox drain aborted: %s", e)

        if sent or failed:
            logger.info("Notification outbox drained: %d sent, %d failed", sent, failed)
        return {"sent": sent, "failed": failed}

    async def _claim(self, db: AsyncSession, intent_id: UUID) -> bool:
        result = await db.execute(
            update(NotificationIntent)
            .where(
                NotificationIntent.id == intent_id,
                NotificationIntent.status == OutboxStatus.PENDING.value,
            )
            .values(status=OutboxStatus.SENDING.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def _dispatch_one(self, db: AsyncSession, intent_id: UUID, kind: str, payload: dict) -> bool:
        attempt = _Attempt(intent_id, kind)
        handler = self._handlers.get(kind)
        if handler is None:
            attempt.errors.append(f"unknown intent kind {kind!r}")
        else:
            await attempt.step("dispatch", lambda: handler(db, attempt, payload))

        status = OutboxStatus.FAILED if attempt.errors else OutboxStatus.SENT
        try:
            await db.execute(
                update(NotificationIntent)
                .where(NotificationIntent.id == intent_id)
                .values(
                    status=status.value,
                    attempts=NotificationIntent.attempts + 1,
                    last_error="; ".join(attempt.errors)[:1000] or None,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("Could not record outcome of intent %s: %s", intent_id, e)

        return status == OutboxStatus.SENT

    async def _send(self, label: str, attempt: _Attempt, send: Callable[[], Awaitable[bool]]) -> None:
        async def checked():
            if not await send():
                raise NotificationFailure("email was not delivered")

        await attempt.step(label, checked)

    async def _reschedule_accepted(self, db: AsyncSession, attempt: _Attempt, payload: dict) -> None:
        business = await attempt.step(
            "business lookup", lambda: directory.find_business(db, UUID(payload["business_id"]))
        )
        business_email = business.email if business is not None else None

        if business_email:
            await self._send(
                "reschedule approval email",
                attempt,
                lambda: self.email.send_reschedule_approval(
                    business_email=business_email,
                    service=payload["service"],
                    original_date=payload["original_date"],
                    original_time=payload["original_time"],
                    new_date=payload["new_date"],
                    new_time=payload["new_time"],
                    customer_name=payload["customer_name"],
                    customer_phone=payload.get("customer_phone"),
                    action_url=f"{self.base_url}/business/dashboard/appointments",
                ),
            )
        else:
            logger.info("Business %s not found or has no email; skipping approval email", payload["business_id"])

        content = (
            f"{payload['customer_name']} has accepted your request to reschedule the "
            f"{payload['service']} appointment to {payload['new_date']} at {payload['new_time']}."
        )
        await attempt.step(
            "acceptance message",
            lambda: message_log.append_message(
                db,
                UUID(payload["conversation_id"]),
                content,
                sender_id=UUID(payload["actor_id"]),
                sender_type=SenderType.USER,
            ),
        )

    async def _appointment_canceled(self, db: AsyncSession, attempt: _Attempt, payload: dict) -> None:
        business = await attempt.step(
            "business lookup", lambda: directory.find_business(db, UUID(payload["business_id"]))
        )
        if business is None:
            logger.info("Business %s not found; skipping cancellation notifications", payload["business_id"])
            return
        business_email, business_name, business_phone = business.email, business.name, business.phone

        content = (
            f"{payload['customer_name']} has canceled the appointment for {payload['service']} "
            f"on {payload['date']} at {payload['time']}."
        )
        await attempt.step(
            "cancellation message",
            lambda: message_log.append_message(
                db,
                UUID(payload["conversation_id"]),
                content,
                sender_id=UUID(payload["actor_id"]),
                sender_type=SenderType.USER,
            ),
        )

        if not payload.get("send_emails", True):
            return

        details = dict(
            service=payload["service"],
            date=payload["date"],
            time=payload["time"],
            canceled_by="user",
            canceler_name=payload["customer_name"],
            other_party_name=business_name or "Business",
            other_party_phone=business_phone,
        )

        if business_email:
            await self._send(
                "business cancellation email",
                attempt,
                lambda: self.email.send_appointment_cancellation(
                    recipient_email=business_email,
                    recipient_type="business",
                    action_url=f"{self.base_url}/business/dashboard/appointments",
                    **details,
                ),
            )

        # A missing user record only costs the customer their copy
        user = await attempt.step("user lookup", lambda: directory.find_user(db, UUID(payload["customer_id"])))
        user_email = user.email if user is not None else None
        if not user_email:
            logger.info("No email on file for user %s; skipping customer cancellation email", payload["customer_id"])
            return

        await self._send(
            "customer cancellation email",
            attempt,
            lambda: self.email.send_appointment_cancellation(
                recipient_email=user_email,
                recipient_type="user",
                action_url=f"{self.base_url}/profile/appointments",
                **details,
            ),
        )

    async def _reschedule_proposed(self, db: AsyncSession, attempt: _Attempt, payload: dict) -> None:
        business = await attempt.step(
            "business lookup", lambda: directory.find_business(db, UUID(payload["business_id"]))
        )
        business_name = business.name if business is not None else "Business"
        business_phone = business.phone if business is not None else None

        content = (
            f"{business_name} has suggested moving the {payload['service']} appointment "
            f"to {payload['new_date']} at {payload['new_time']}."
        )
        await attempt.step(
            "proposal message",
            lambda: message_log.append_message(
                db,
                UUID(payload["conversation_id"]),
                content,
                sender_id=UUID(payload["business_id"]),
                sender_type=SenderType.BUSINESS,
            ),
        )

        user = await attempt.step("user lookup", lambda: directory.find_user(db, UUID(payload["customer_id"])))
        user_email = user.email if user is not None else None
        if not user_email:
            logger.info("No email on file for user %s; skipping reschedule request email", payload["customer_id"])
            return

        await self._send(
            "reschedule request email",
            attempt,
            lambda: self.email.send_reschedule_request(
                user_email=user_email,
                service=payload["service"],
                original_date=payload["original_date"],
                original_time=payload["original_time"],
                new_date=payload["new_date"],
                new_time=payload["new_time"],
                business_name=business_name,
                business_phone=business_phone,
                action_url=f"{self.base_url}/profile/appointments",
            ),
        )
