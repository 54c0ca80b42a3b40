"""Persistence seam used by the chat runtime.

Wraps the conversation/confirmation services with a session factory so a
long-lived WebSocket handler opens one short session per operation.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import async_session
from app.schemas.chat import Message, PendingToolConfirmation
from app.services import confirmation_service, conversation_service


class ConversationRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session) -> None:
        self._session_factory = session_factory

    async def create_conversation(
        self, *, user_id: str, organization_id: str, agent_id: str, model: str
    ) -> str:
        async with self._session_factory() as db:
            conversation = await conversation_service.create_conversation(
                db,
                user_id=user_id,
                organization_id=organization_id,
                agent_id=agent_id,
                model=model,
            )
            return conversation.id

    async def conversation_exists(self, conversation_id: str) -> bool:
        async with self._session_factory() as db:
            return await conversation_service.get_conversation(db, conversation_id) is not None

    async def append_message(self, conversation_id: str, message: Message) -> None:
        async with self._session_factory() as db:
            await conversation_service.append_message(db, conversation_id, message)

    async def load_messages(self, conversation_id: str) -> list[Message]:
        async with self._session_factory() as db:
            return await conversation_service.load_messages(db, conversation_id)

    async def record_confirmation(
        self, conversation_id: str, message_id: str, pending: PendingToolConfirmation
    ) -> None:
        async with self._session_factory() as db:
            await confirmation_service.record_confirmation_request(
                db,
                tool_call_id=pending.tool_call_id,
                conversation_id=conversation_id,
                message_id=message_id,
                tool_name=pending.tool_name,
                tool_input=pending.input,
            )

    async def resolve_confirmation(
        self, conversation_id: str, tool_call_id: str, result: Any
    ) -> PendingToolConfirmation | None:
        async with self._session_factory() as db:
            confirmation = await confirmation_service.resolve_confirmation(
                db, conversation_id, tool_call_id, result
            )
            if confirmation is None:
                return None
            return PendingToolConfirmation(
                tool_call_id=confirmation.id,
                tool_name=confirmation.tool_name,
                input=confirmation.input,
            )

    async def count_pending(self, conversation_id: str) -> int:
        async with self._session_factory() as db:
            return await confirmation_service.count_pending(db, conversation_id)


def get_repository() -> ConversationRepository:
    return ConversationRepository()
