"""Conversation service — durable storage of the rendered message log."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.conversation import Conversation, StoredMessage
from app.schemas.chat import Message


async def create_conversation(
    db: AsyncSession,
    *,
    user_id: str,
    organization_id: str,
    agent_id: str,
    model: str,
    conversation_id: str | None = None,
) -> Conversation:
    conversation = Conversation(
        id=conversation_id or str(uuid.uuid4()),
        user_id=user_id,
        organization_id=organization_id,
        agent_id=agent_id,
        model=model,
    )
    db.add(conversation)
    await db.commit()
    await db.refresh(conversation)
    return conversation


async def get_conversation(db: AsyncSession, conversation_id: str) -> Conversation | None:
    return await db.get(Conversation, conversation_id)


async def list_conversations(
    db: AsyncSession,
    *,
    user_id: str | None = None,
    organization_id: str | None = None,
) -> list[Conversation]:
    stmt = select(Conversation).order_by(Conversation.updated_at.desc())
    if user_id:
        stmt = stmt.where(Conversation.user_id == user_id)
    if organization_id:
        stmt = stmt.where(Conversation.organization_id == organization_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def append_message(db: AsyncSession, conversation_id: str, message: Message) -> StoredMessage:
    """Insert ``message`` or update it in place when its id is already stored."""
    wire = message.to_wire()
    stored = await db.get(StoredMessage, (conversation_id, message.id))
    if stored is None:
        count = await db.scalar(
            select(func.count()).select_from(StoredMessage).where(
                StoredMessage.conversation_id == conversation_id
            )
        )
        stored = StoredMessage(
            id=message.id,
            conversation_id=conversation_id,
            position=count or 0,
            role=message.role,
        )
        db.add(stored)
    stored.content = message.text
    stored.parts = wire.get("parts", [])
    stored.message_metadata = wire.get("metadata", {})

    conversation = await db.get(Conversation, conversation_id)
    if conversation is not None:
        conversation.updated_at = datetime.now()
        if conversation.title == "New conversation" and message.role == "user" and message.text.strip():
            conversation.title = message.text.strip()[:80]

    await db.commit()
    await db.refresh(stored)
    return stored


async def load_messages(db: AsyncSession, conversation_id: str) -> list[Message]:
    stmt = (
        select(StoredMessage)
        .where(StoredMessage.conversation_id == conversation_id)
        .order_by(StoredMessage.position)
    )
    result = await db.execute(stmt)
    return [
        Message.model_validate({
            "id": row.id,
            "role": row.role,
            "parts": row.parts or [],
            "metadata": row.message_metadata or {},
        })
        for row in result.scalars().all()
    ]
