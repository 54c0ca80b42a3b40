"""Tool confirmation endpoints (read-only; decisions arrive over the chat socket)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.conversation import ToolConfirmationResponse
from app.services import confirmation_service

router = APIRouter()


@router.get("/", response_model=list[ToolConfirmationResponse])
async def list_confirmations(
    status: str | None = None,
    conversation_id: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await confirmation_service.list_confirmations(
        db, status=status, conversation_id=conversation_id
    )
