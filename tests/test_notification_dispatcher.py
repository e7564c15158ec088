"""Tests for best-effort notification delivery from the outbox."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import delete, select

from app.models.appointment import AppointmentStatus
from app.models.conversation import Message, SenderType
from app.models.notification_outbox import NotificationIntent, OutboxStatus
from app.models.user import User
from app.services import appointment_store, transition_executor
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.transition_rules import decide, decide_proposal

SUGGESTION = {"date": "2024-05-03", "time": "14:00", "suggested_at": "2024-04-19T09:00:00"}


def mock_email(result=True):
    email = MagicMock()
    email.send_reschedule_approval = AsyncMock(return_value=result)
    email.send_appointment_cancellation = AsyncMock(return_value=result)
    email.send_reschedule_request = AsyncMock(return_value=result)
    return email


async def transition(db, appointment, actor_id, status, **fields):
    current = await appointment_store.get(db, appointment.conversation_id, appointment.id)
    result = await transition_executor.execute(
        db, current, decide(current, status, **fields), actor_id=actor_id
    )
    return result.intent_ids


async def messages(db, conversation_id):
    result = await db.execute(
        select(Message).where(Message.conversation_id == conversation_id).order_by(Message.created_at)
    )
    return result.scalars().all()


async def intent(db, intent_id) -> NotificationIntent:
    result = await db.execute(
        select(NotificationIntent)
        .where(NotificationIntent.id == intent_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_accepted_reschedule_emails_business_and_posts_message(
    db, session_factory, make_appointment, conversation, customer
):
    appointment = await make_appointment(
        status=AppointmentStatus.RESCHEDULE_REQUESTED, suggested_time=SUGGESTION
    )
    intent_ids = await transition(
        db, appointment, customer.id, "confirmed", preferred_date="2024-05-03", preferred_time="14:00"
    )
    email = mock_email()

    counts = await NotificationDispatcher(session_factory, email=email, base_url="https://app.test").drain(intent_ids)

    assert counts == {"sent": 1, "failed": 0}
    kwargs = email.send_reschedule_approval.await_args.kwargs
    assert kwargs["business_email"] == "owner@sharpcuts.example.com"
    assert (kwargs["original_date"], kwargs["original_time"]) == ("2024-05-01", "10:00")
    assert (kwargs["new_date"], kwargs["new_time"]) == ("2024-05-03", "14:00")
    assert kwargs["customer_name"] == "Jane Doe"
    assert kwargs["customer_phone"] == "+15552223333"
    assert kwargs["action_url"] == "https://app.test/business/dashboard/appointments"

    posted = await messages(db, conversation.id)
    assert len(posted) == 1
    assert posted[0].sender_type == SenderType.USER
    assert posted[0].sender_id == customer.id
    assert "has accepted your request to reschedule" in posted[0].content
    assert "2024-05-03 at 14:00" in posted[0].content

    stored = await intent(db, intent_ids[0])
    assert stored.status == OutboxStatus.SENT.value
    assert stored.attempts == 1


@pytest.mark.asyncio
async def test_email_failure_is_recorded_not_raised(
    db, session_factory, make_appointment, conversation, customer
):
    appointment = await make_appointment(
        status=AppointmentStatus.RESCHEDULE_REQUESTED, suggested_time=SUGGESTION
    )
    intent_ids = await transition(
        db, appointment, customer.id, "confirmed", preferred_date="2024-05-03", preferred_time="14:00"
    )
    email = mock_email()
    email.send_reschedule_approval.side_effect = RuntimeError("SendGrid is down")

    counts = await NotificationDispatcher(session_factory, email=email).drain(intent_ids)

    assert counts == {"sent": 0, "failed": 1}
    # The message is still appended when the email fails
    assert len(await messages(db, conversation.id)) == 1

    stored = await intent(db, intent_ids[0])
    assert stored.status == OutboxStatus.FAILED.value
    assert "SendGrid is down" in stored.last_error

    current = await appointment_store.get(db, appointment.conversation_id, appointment.id)
    assert current.status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_undelivered_email_marks_intent_failed(db, session_factory, make_appointment, customer):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    intent_ids = await transition(db, appointment, customer.id, "canceled")

    counts = await NotificationDispatcher(session_factory, email=mock_email(result=False)).drain(intent_ids)

    assert counts == {"sent": 0, "failed": 1}
    stored = await intent(db, intent_ids[0])
    assert "business cancellation email" in stored.last_error
    assert "customer cancellation email" in stored.last_error


@pytest.mark.asyncio
async def test_cancellation_notifies_both_parties(db, session_factory, make_appointment, conversation, customer):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    intent_ids = await transition(db, appointment, customer.id, "canceled")
    email = mock_email()

    await NotificationDispatcher(session_factory, email=email, base_url="https://app.test").drain(intent_ids)

    calls = {c.kwargs["recipient_type"]: c.kwargs for c in email.send_appointment_cancellation.await_args_list}
    assert calls["business"]["recipient_email"] == "owner@sharpcuts.example.com"
    assert calls["business"]["action_url"] == "https://app.test/business/dashboard/appointments"
    assert calls["user"]["recipient_email"] == "jane@example.com"
    assert calls["user"]["action_url"] == "https://app.test/profile/appointments"
    assert calls["user"]["other_party_name"] == "Sharp Cuts"

    posted = await messages(db, conversation.id)
    assert "has canceled the appointment for Haircut" in posted[0].content


@pytest.mark.asyncio
async def test_cancellation_without_user_record_still_succeeds(
    db, session_factory, make_appointment, conversation, customer
):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    intent_ids = await transition(db, appointment, customer.id, "canceled")
    await db.execute(delete(User).where(User.id == customer.id))
    await db.commit()
    email = mock_email()

    counts = await NotificationDispatcher(session_factory, email=email).drain(intent_ids)

    assert counts == {"sent": 1, "failed": 0}
    assert email.send_appointment_cancellation.await_count == 1
    assert email.send_appointment_cancellation.await_args.kwargs["recipient_type"] == "business"
    assert len(await messages(db, conversation.id)) == 1


@pytest.mark.asyncio
async def test_cancellation_with_emails_disabled_only_posts_message(
    db, session_factory, make_appointment, conversation, customer
):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    current = await appointment_store.get(db, appointment.conversation_id, appointment.id)
    result = await transition_executor.execute(
        db, current, decide(current, "canceled"), actor_id=customer.id, send_emails=False
    )
    email = mock_email()

    counts = await NotificationDispatcher(session_factory, email=email).drain(result.intent_ids)

    assert counts == {"sent": 1, "failed": 0}
    email.send_appointment_cancellation.assert_not_awaited()
    assert len(await messages(db, conversation.id)) == 1


@pytest.mark.asyncio
async def test_proposal_messages_customer_as_business(
    db, session_factory, make_appointment, conversation, business
):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    current = await appointment_store.get(db, appointment.conversation_id, appointment.id)
    result = await transition_executor.execute(
        db, current, decide_proposal(current, "2024-05-03", "14:00"), actor_id=business.id
    )
    email = mock_email()

    await NotificationDispatcher(session_factory, email=email).drain(result.intent_ids)

    posted = await messages(db, conversation.id)
    assert posted[0].sender_type == SenderType.BUSINESS
    assert posted[0].content.startswith("Sharp Cuts has suggested moving the Haircut appointment")
    kwargs = email.send_reschedule_request.await_args.kwargs
    assert kwargs["user_email"] == "jane@example.com"
    assert (kwargs["new_date"], kwargs["new_time"]) == ("2024-05-03", "14:00")


@pytest.mark.asyncio
async def test_drain_sends_each_intent_once(db, session_factory, make_appointment, customer):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    await transition(db, appointment, customer.id, "canceled")
    email = mock_email()
    dispatcher = NotificationDispatcher(session_factory, email=email)

    assert await dispatcher.drain() == {"sent": 1, "failed": 0}
    assert await dispatcher.drain() == {"sent": 0, "failed": 0}
    assert email.send_appointment_cancellation.await_count == 2


@pytest.mark.asyncio
async def test_overlapping_drains_deliver_intent_once(db, session_factory, make_appointment, conversation, customer):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    intent_ids = await transition(db, appointment, customer.id, "canceled")
    email = mock_email()

    first, second = await asyncio.gather(
        NotificationDispatcher(session_factory, email=email).drain(intent_ids),
        NotificationDispatcher(session_factory, email=email).drain(),
    )

    assert first["sent"] + second["sent"] == 1
    assert first["failed"] + second["failed"] == 0
    # One email per party, not two
    assert email.send_appointment_cancellation.await_count == 2
    assert len(await messages(db, conversation.id)) == 1
    stored = await intent(db, intent_ids[0])
    assert stored.status == OutboxStatus.SENT.value
    assert stored.attempts == 1


@pytest.mark.asyncio
async def test_claimed_intent_is_skipped(db, session_factory, make_appointment, conversation, customer):
    appointment = await make_appointment(status=AppointmentStatus.CONFIRMED)
    intent_ids = await transition(db, appointment, customer.id, "canceled")
    claimed = await intent(db, intent_ids[0])
    claimed.status = OutboxStatus.SENDING.value
    await db.commit()
    email = mock_email()

    counts = await NotificationDispatcher(session_factory, email=email).drain(intent_ids)

    assert counts == {"sent": 0, "failed": 0}
    email.send_appointment_cancellation.assert_not_awaited()
    assert await messages(db, conversation.id) == []


@pytest.mark.asyncio
async def test_unknown_intent_kind_fails_quietly(db, session_factory, conversation):
    stray = NotificationIntent(
        kind="mystery",
        conversation_id=conversation.id,
        appointment_id=conversation.id,
        payload={},
        status=OutboxStatus.PENDING.value,
    )
    db.add(stray)
    await db.commit()

    counts = await NotificationDispatcher(session_factory, email=mock_email()).drain()

    assert counts == {"sent": 0, "failed": 1}
    assert "unknown intent kind" in (await intent(db, stray.id)).last_error
