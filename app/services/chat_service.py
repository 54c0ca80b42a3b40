"""Chat service — server side of the session protocol.

One :class:`ChatAgentSession` per WebSocket. It persists the rendered log,
runs the agent loop against the generation service and streams frames
back to the client:

* text and tool calls are assembled into one assistant message that is
  re-sent (same id) as it grows;
* tool calls needing approval are recorded and the turn pauses until a
  ``tool_confirmation`` frame arrives;
* ``createDocument`` results open an artifact sub-stream.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from app.adapters.base import GenerationService
from app.config import settings
from app.errors import ProtocolError
from app.schemas.chat import (
    INPUT_AVAILABLE,
    OUTPUT_AVAILABLE,
    OUTPUT_ERROR,
    ArtifactPart,
    Message,
    PendingToolConfirmation,
    TextPart,
    ToolPart,
    WireModel,
    user_message,
)
from app.schemas.frames import (
    ArtifactCompleteFrame,
    ArtifactDeltaFrame,
    ArtifactErrorFrame,
    ArtifactStartFrame,
    ChatMessageFrame,
    ConversationCreatedFrame,
    ErrorFrame,
    MessageFrame,
    MessagesFrame,
    StreamEndFrame,
    StreamStartFrame,
    ToolConfirmationFrame,
    decode_client_frame,
)
from app.services.confirmation_service import is_approval
from app.services.message_store import MessageStore
from app.services.model_messages import to_model_messages
from app.services.normalizer import normalize_messages
from app.services.repository import ConversationRepository
from app.services.tools import ARTIFACT_TOOL, ToolRegistry, UnknownToolError
from app.services.tools import registry as default_registry

logger = logging.getLogger(__name__)

SendFrame = Callable[[WireModel], Awaitable[None]]

# Re-send the growing assistant message every this many characters
_PUBLISH_EVERY = 200


def _new_artifact_id() -> str:
    return f"artifact-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class ChatAgentSession:
    def __init__(
        self,
        send: SendFrame,
        repository: ConversationRepository,
        generator: GenerationService,
        *,
        agent_id: str,
        user_id: str,
        organization_id: str,
        conversation_id: str | None = None,
        model: str | None = None,
        tools: ToolRegistry | None = None,
        tools_requiring_confirmation: Iterable[str] | None = None,
        max_steps: int | None = None,
    ) -> None:
        self._send = send
        self.repository = repository
        self.generator = generator
        self.agent_id = agent_id
        self.user_id = user_id
        self.organization_id = organization_id
        self.conversation_id = conversation_id
        self.model = model or settings.default_model
        self.tools = tools or default_registry
        if tools_requiring_confirmation is None:
            tools_requiring_confirmation = settings.tools_requiring_confirmation
        self.gated_tools = frozenset(tools_requiring_confirmation)
        self.max_steps = max_steps or settings.max_agent_steps
        # Server keeps the full log; retention applies to clients only
        self.log = MessageStore(max_messages=0)
        self._loaded = False

    # ── Connection ───────────────────────────────────────────────────

    async def open(self) -> None:
        """Send the stored history for an existing conversation."""
        if not self.conversation_id:
            return
        if not await self.repository.conversation_exists(self.conversation_id):
            logger.info("Unknown conversation %s; a new one starts on first message", self.conversation_id)
            self.conversation_id = None
            return
        await self._load()
        await self._send(MessagesFrame(messages=list(self.log.messages)))

    async def _load(self) -> None:
        if self._loaded or not self.conversation_id:
            return
        self.log.replace_all(await self.repository.load_messages(self.conversation_id))
        self._loaded = True

    async def handle_raw(self, raw: str) -> None:
        try:
            frame = decode_client_frame(raw)
        except ProtocolError as exc:
            logger.warning("Dropping client frame: %s", exc)
            await self._send(ErrorFrame(message="Malformed frame"))
            return

        if isinstance(frame, ChatMessageFrame):
            await self.handle_chat_message(frame)
        else:
            await self.handle_tool_confirmation(frame)

    # ── chat_message ─────────────────────────────────────────────────

    async def handle_chat_message(self, frame: ChatMessageFrame) -> None:
        content = frame.content.strip()
        if not content:
            await self._send(ErrorFrame(message="Empty message"))
            return

        if frame.metadata.model:
            self.model = frame.metadata.model
        await self._ensure_conversation(frame.metadata.conversation_id)

        message = user_message(
            frame.content,
            userId=self.user_id,
            organizationId=self.organization_id,
            agentId=self.agent_id,
            conversationId=self.conversation_id,
        )
        if frame.message_id:
            existing = self.log.get(frame.message_id)
            if existing is None or existing.role == "user":
                message.id = frame.message_id
            else:
                logger.warning(
                    "Ignoring client message id %s owned by a %s message", frame.message_id, existing.role
                )
        await self._publish(message)
        await self.run_turn()

    async def _ensure_conversation(self, requested_id: str | None) -> None:
        if self.conversation_id:
            await self._load()
            return
        if requested_id and await self.repository.conversation_exists(requested_id):
            self.conversation_id = requested_id
            await self._load()
            return
        self.conversation_id = await self.repository.create_conversation(
            user_id=self.user_id,
            organization_id=self.organization_id,
            agent_id=self.agent_id,
            model=self.model,
        )
        self._loaded = True
        logger.info("Created conversation %s for agent %s", self.conversation_id, self.agent_id)
        await self._send(ConversationCreatedFrame(conversation_id=self.conversation_id))

    # ── tool_confirmation ────────────────────────────────────────────

    async def handle_tool_confirmation(self, frame: ToolConfirmationFrame) -> None:
        if not self.conversation_id:
            logger.info("Ignoring confirmation %s: no conversation", frame.tool_call_id)
            return
        decision = frame.result if frame.result is not None else {"confirmed": True}
        pending = await self.repository.resolve_confirmation(
            self.conversation_id, frame.tool_call_id, decision
        )
        if pending is None:
            # Already resolved or discarded (e.g. by a reconnect)
            logger.info("Ignoring confirmation for unknown tool call %s", frame.tool_call_id)
            return

        await self._load()
        message = self.log.find_by_part(pending.tool_call_id)
        if message is None:
            logger.warning("Confirmed tool call %s not found in log", pending.tool_call_id)
            return

        if is_approval(decision) and self.tools.has(pending.tool_name):
            output, state = await self._run_tool(pending.tool_name, pending.input)
        else:
            output, state = decision, OUTPUT_AVAILABLE
        await self._settle_tool(message.id, pending.tool_call_id, pending.tool_name, output, state)
        await self._send(MessagesFrame(messages=list(self.log.messages)))

        if await self.repository.count_pending(self.conversation_id) == 0:
            await self.run_turn()

    # ── Agent loop ───────────────────────────────────────────────────

    async def run_turn(self) -> None:
        await self._send(StreamStartFrame())
        try:
            for _ in range(self.max_steps):
                if not await self._step():
                    break
            else:
                logger.warning("Agent loop hit %d steps in %s", self.max_steps, self.conversation_id)
        except Exception as exc:
            logger.exception("Generation failed in conversation %s", self.conversation_id)
            await self._send(ErrorFrame(message=str(exc) or "Generation failed"))
        finally:
            await self._send(StreamEndFrame())

    async def _step(self) -> bool:
        """Generate one assistant message. Returns True to keep looping."""
        upstream = to_model_messages(normalize_messages(self.log.messages, self.model))
        assistant = Message(role="assistant")
        assistant.metadata["model"] = self.model
        calls: list[ToolPart] = []
        unpublished = 0

        async for event in self.generator.generate(upstream, model=self.model):
            event_type = event.get("type")
            if event_type == "text-delta":
                delta = event.get("delta") or ""
                if assistant.parts and isinstance(assistant.parts[-1], TextPart):
                    assistant.parts[-1].text += delta
                else:
                    assistant.parts.append(TextPart(text=delta))
                unpublished += len(delta)
                if unpublished >= _PUBLISH_EVERY:
                    unpublished = 0
                    await self._send(MessageFrame(message=assistant.model_copy(deep=True)))
            elif event_type == "tool-call":
                part = ToolPart(
                    tool_call_id=event.get("toolCallId") or f"call_{uuid.uuid4().hex[:12]}",
                    tool_name=event.get("toolName") or "",
                    input=event.get("input") or {},
                    state=INPUT_AVAILABLE,
                )
                assistant.parts.append(part)
                calls.append(part)
            elif event_type == "finish":
                break
            else:
                logger.debug("Ignoring generation event %r", event_type)

        if not assistant.parts:
            return False
        await self._publish(assistant)
        if not calls:
            return False

        paused = False
        for part in calls:
            if part.tool_name in self.gated_tools:
                pending = PendingToolConfirmation(
                    tool_call_id=part.tool_call_id, tool_name=part.tool_name, input=part.input
                )
                await self.repository.record_confirmation(self.conversation_id, assistant.id, pending)
                logger.info("Tool %s (%s) waiting for confirmation", part.tool_name, part.tool_call_id)
                paused = True
                continue
            output, state = await self._run_tool(part.tool_name, part.input)
            await self._settle_tool(assistant.id, part.tool_call_id, part.tool_name, output, state)
        return not paused

    # ── Tools & artifacts ────────────────────────────────────────────

    async def _run_tool(self, tool_name: str, tool_input: Any) -> tuple[Any, str]:
        try:
            return await self.tools.execute(tool_name, tool_input), OUTPUT_AVAILABLE
        except UnknownToolError:
            logger.warning("Agent called unknown tool %s", tool_name)
            return {"error": f"Unknown tool: {tool_name}"}, OUTPUT_ERROR
        except Exception as exc:
            logger.exception("Tool %s failed", tool_name)
            return {"error": str(exc)}, OUTPUT_ERROR

    async def _settle_tool(
        self, message_id: str, tool_call_id: str, tool_name: str, output: Any, state: str
    ) -> None:
        updated = self.log.update_part(message_id, tool_call_id, {"output": output, "state": state})
        if updated is None:
            return
        if tool_name == ARTIFACT_TOOL and state == OUTPUT_AVAILABLE and isinstance(output, dict):
            artifact = await self._stream_artifact(output)
            if artifact is not None:
                updated = updated.model_copy(update={"parts": [*updated.parts, artifact]})
        await self._publish(updated)

    async def _stream_artifact(self, request: dict[str, Any]) -> ArtifactPart | None:
        artifact_id = _new_artifact_id()
        title = request.get("title") or "Untitled"
        kind = request.get("kind") or "document"
        await self._send(ArtifactStartFrame(artifact_id=artifact_id, title=title, kind=kind))
        content = ""
        try:
            async for delta in self.generator.generate_artifact(
                title=title, kind=kind, description=request.get("description"), model=self.model
            ):
                content += delta
                await self._send(ArtifactDeltaFrame(artifact_id=artifact_id, delta=delta))
        except Exception as exc:
            logger.exception("Artifact %s generation failed", artifact_id)
            await self._send(ArtifactErrorFrame(artifact_id=artifact_id, error=str(exc) or "Unknown error"))
            return None
        await self._send(
            ArtifactCompleteFrame(artifact_id=artifact_id, title=title, kind=kind, content=content)
        )
        logger.info("Artifact %s complete (%d chars)", artifact_id, len(content))
        return ArtifactPart(artifact_id=artifact_id, title=title, kind=kind)

    # ── Helpers ──────────────────────────────────────────────────────

    async def _publish(self, message: Message) -> None:
        """Persist ``message`` and send it to the client."""
        message = self.log.append(message)
        await self.repository.append_message(self.conversation_id, message)
        await self._send(MessageFrame(message=message))
