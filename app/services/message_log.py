"""Append messages to a conversation's log."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.conversation import Conversation, Message, SenderType

logger = logging.getLogger(__name__)


async def append_message(
    db: AsyncSession,
    conversation_id: UUID,
    content: str,
    sender_id: UUID,
    sender_type: SenderType,
) -> Message:
    """Add a message to the conversation and bump its last activity.

    Commits on success; on failure the session is rolled back and the
    error propagates.
    """
    now = datetime.utcnow()
    message = Message(
        conversation_id=conversation_id,
        content=content,
        sender_id=sender_id,
        sender_type=sender_type,
        is_read=False,
        created_at=now,
    )
    try:
        db.add(message)
        await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_activity=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Appended %s message to conversation %s", sender_type.value, conversation_id)
    return message
