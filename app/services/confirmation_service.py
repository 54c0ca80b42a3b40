"""Confirmation service — track and resolve human-in-the-loop tool calls."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tool_confirmation import ToolConfirmation


def is_approval(result: Any) -> bool:
    """A decision denies only when it says ``confirmed: false`` explicitly."""
    return not (isinstance(result, dict) and result.get("confirmed") is False)


async def list_confirmations(
    db: AsyncSession,
    status: str | None = None,
    conversation_id: str | None = None,
) -> list[ToolConfirmation]:
    stmt = select(ToolConfirmation).order_by(ToolConfirmation.created_at.desc())
    if status:
        stmt = stmt.where(ToolConfirmation.status == status)
    if conversation_id:
        stmt = stmt.where(ToolConfirmation.conversation_id == conversation_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def record_confirmation_request(
    db: AsyncSession,
    *,
    tool_call_id: str,
    conversation_id: str,
    message_id: str,
    tool_name: str,
    tool_input: Any,
) -> ToolConfirmation:
    """Called when the agent emits a tool call that needs user approval."""
    confirmation = await db.get(ToolConfirmation, (conversation_id, tool_call_id))
    if confirmation is None:
        confirmation = ToolConfirmation(
            id=tool_call_id,
            conversation_id=conversation_id,
            message_id=message_id,
            tool_name=tool_name,
            input=tool_input,
        )
        db.add(confirmation)
        await db.commit()
        await db.refresh(confirmation)
    return confirmation


async def resolve_confirmation(
    db: AsyncSession,
    conversation_id: str,
    tool_call_id: str,
    result: Any,
) -> ToolConfirmation | None:
    """Mark a pending confirmation resolved; ``None`` when nothing is pending."""
    confirmation = await db.get(ToolConfirmation, (conversation_id, tool_call_id))
    if not confirmation or confirmation.status != "pending":
        return None

    confirmation.status = "approved" if is_approval(result) else "denied"
    confirmation.result = result
    confirmation.resolved_at = datetime.now()

    await db.commit()
    await db.refresh(confirmation)
    return confirmation


async def count_pending(db: AsyncSession, conversation_id: str) -> int:
    count = await db.scalar(
        select(func.count()).select_from(ToolConfirmation).where(
            ToolConfirmation.conversation_id == conversation_id,
            ToolConfirmation.status == "pending",
        )
    )
    return count or 0
