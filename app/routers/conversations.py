"""Conversation history endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.schemas.conversation import ConversationResponse
from app.services import conversation_service
from app.services.normalizer import normalize_messages

router = APIRouter()


@router.get("/", response_model=list[ConversationResponse])
async def list_conversations(
    user_id: str | None = None,
    organization_id: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await conversation_service.list_conversations(
        db, user_id=user_id, organization_id=organization_id
    )


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, db: AsyncSession = Depends(get_db)):
    conversation = await conversation_service.get_conversation(db, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages")
async def get_messages(conversation_id: str, db: AsyncSession = Depends(get_db)) -> list[dict[str, Any]]:
    """The rendered log, exactly as stored."""
    if not await conversation_service.get_conversation(db, conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await conversation_service.load_messages(db, conversation_id)
    return [m.to_wire() for m in messages]


@router.get("/{conversation_id}/messages/normalized")
async def get_normalized_messages(
    conversation_id: str,
    model: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Preview of what would be sent upstream for ``model``."""
    if not await conversation_service.get_conversation(db, conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await conversation_service.load_messages(db, conversation_id)
    return [m.to_wire() for m in normalize_messages(messages, model or settings.default_model)]
