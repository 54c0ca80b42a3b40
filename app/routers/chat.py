"""Chat WebSocket endpoint — one agent session per connection."""

import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from app.adapters.base import GenerationService
from app.adapters.echo import EchoGenerationService
from app.schemas.chat import WireModel
from app.schemas.frames import ErrorFrame, encode_frame
from app.services.chat_service import ChatAgentSession
from app.services.repository import ConversationRepository, get_repository

logger = logging.getLogger(__name__)

router = APIRouter()


def get_generation_service() -> GenerationService:
    return EchoGenerationService()


@router.websocket("/ws")
async def chat_ws(
    ws: WebSocket,
    agent_id: str = Query(..., alias="agentId"),
    user_id: str = Query(..., alias="userId"),
    organization_id: str = Query(..., alias="organizationId"),
    conversation_id: str | None = Query(None, alias="conversationId"),
    model: str | None = Query(None),
    repository: ConversationRepository = Depends(get_repository),
    generator: GenerationService = Depends(get_generation_service),
):
    """Chat session socket.

    Client sends ``chat_message`` / ``tool_confirmation`` frames; server
    answers with ``messages``, ``message``, ``stream_start``/``stream_end``,
    ``conversation_created``, ``error`` and ``artifact_*`` frames.
    """
    await ws.accept()

    async def send(frame: WireModel) -> None:
        await ws.send_text(encode_frame(frame))

    session = ChatAgentSession(
        send,
        repository,
        generator,
        agent_id=agent_id,
        user_id=user_id,
        organization_id=organization_id,
        conversation_id=conversation_id or None,
        model=model,
    )
    logger.info("Chat WS connected for agent %s (user %s)", agent_id, user_id)

    try:
        await session.open()
        while True:
            raw = await ws.receive_text()
            await session.handle_raw(raw)
    except WebSocketDisconnect:
        logger.info("Chat WS disconnected for agent %s", agent_id)
    except Exception as e:
        logger.exception("Chat WS error for agent %s", agent_id)
        try:
            await ws.send_text(encode_frame(ErrorFrame(message=str(e) or "Chat error occurred")))
        except RuntimeError:
            logger.debug("Socket already closed; error frame not sent")
