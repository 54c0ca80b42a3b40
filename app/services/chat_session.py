"""Client-side chat session.

A :class:`ChatSession` is created per open chat view and owns the message
store, the artifact streams and the pending confirmations for one
(agentId, userId, organizationId, conversationId). Every inbound frame is
decoded once and routed to exactly one handler; outside code only reads
the exposed views and calls the outward operations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from app.adapters.base import Transport, TransportFactory
from app.adapters.websocket_transport import WebSocketTransport
from app.config import settings
from app.errors import ConfirmationMismatchError, ProtocolError, SessionConnectionError
from app.schemas.chat import ArtifactStream, Message, PendingToolConfirmation, user_message
from app.schemas.frames import (
    SERVER_FRAME_TYPES,
    ArtifactCompleteFrame,
    ArtifactDeltaFrame,
    ArtifactErrorFrame,
    ArtifactStartFrame,
    ChatMessageFrame,
    ChatMessageMetadata,
    ConversationCreatedFrame,
    ErrorFrame,
    MessageFrame,
    MessagesFrame,
    ServerFrame,
    StreamEndFrame,
    StreamStartFrame,
    decode_server_frame,
    encode_frame,
)
from app.services.artifact_assembler import ArtifactAssembler
from app.services.confirmation_gate import ToolConfirmationGate
from app.services.connection_manager import ConnectionManager, ConnectionState, Scheduler
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        *,
        agent_id: str,
        user_id: str,
        organization_id: str,
        conversation_id: str | None = None,
        model: str | None = None,
        url: str | None = None,
        transport_factory: TransportFactory | None = None,
        tools_requiring_confirmation: Iterable[str] | None = None,
        auto_reconnect: bool | None = None,
        scheduler: Scheduler | None = None,
        max_messages: int | None = None,
        max_artifacts: int | None = None,
        initial_messages: Iterable[Message] = (),
        auto_connect: bool = False,
        on_change: Callable[[str], None] | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.user_id = user_id
        self.organization_id = organization_id
        self.model = model or settings.default_model
        self.url = url or settings.chat_ws_url
        self._conversation_id = conversation_id
        self._on_change = on_change

        self._store = MessageStore(initial_messages, max_messages=max_messages)
        self._artifacts = ArtifactAssembler(max_artifacts=max_artifacts)
        self._gate = ToolConfirmationGate(tools_requiring_confirmation)
        self._gate.reconcile(self._store.messages)
        self._connection = ConnectionManager(
            transport_factory or self._websocket_transport,
            on_message=self.handle_frame,
            on_state_change=lambda state: self._changed("connection"),
            auto_reconnect=auto_reconnect,
            scheduler=scheduler,
        )
        self._is_streaming = False
        self._error: str | None = None

        self._handlers: dict[str, Callable[[Any], None]] = {
            "messages": self._on_messages,
            "message": self._on_message,
            "stream_start": self._on_stream_start,
            "stream_end": self._on_stream_end,
            "conversation_created": self._on_conversation_created,
            "error": self._on_error,
            "artifact_start": self._on_artifact_start,
            "artifact_delta": self._on_artifact_delta,
            "artifact_complete": self._on_artifact_complete,
            "artifact_error": self._on_artifact_error,
        }
        missing = SERVER_FRAME_TYPES - self._handlers.keys()
        if missing:
            raise RuntimeError(f"No handler for server frames: {sorted(missing)}")

        if auto_connect:
            self.connect()

    # ── Read-only views ──────────────────────────────────────────────

    # Views are copies; only the session mutates its state
    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(m.model_copy(deep=True) for m in self._store.messages)

    @property
    def artifacts(self) -> dict[str, ArtifactStream]:
        return self._artifacts.streams

    @property
    def pending_confirmations(self) -> dict[str, PendingToolConfirmation]:
        return {k: p.model_copy(deep=True) for k, p in self._gate.pending.items()}

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def is_streaming(self) -> bool:
        return self._is_streaming

    @property
    def error(self) -> str | None:
        return self._error

    def status(self) -> dict[str, Any]:
        return {
            "conversation_id": self._conversation_id,
            "connection": self._connection.describe(),
            "messages": len(self._store),
            "artifacts": len(self._artifacts.streams),
            "pending_confirmations": sorted(self._gate.pending),
            "is_streaming": self._is_streaming,
            "error": self._error,
        }

    # ── Outward operations ───────────────────────────────────────────

    def connect(self) -> None:
        self._connection.connect()

    def disconnect(self) -> None:
        self._connection.disconnect()
        self._is_streaming = False

    def set_messages(self, messages: Iterable[Message]) -> None:
        """Replace the local log, e.g. with history loaded from the database."""
        self._store.replace_all(messages)
        self._gate.reconcile(self._store.messages)
        self._changed("messages")

    def clear_history(self) -> None:
        """Forget the local log, artifacts and pending confirmations."""
        self._store.clear()
        self._artifacts.clear()
        self._gate.clear()
        self._error = None
        self._changed("messages")

    def send_message(self, text: str) -> Message | None:
        """Optimistically append a user message, then send it.

        Returns the optimistic message, or ``None`` for blank input. A send
        that fails while the connection is not up is recorded in
        :attr:`error` and on the message's metadata.
        """
        if not text.strip():
            return None

        message = self._store.append(
            user_message(
                text,
                userId=self.user_id,
                organizationId=self.organization_id,
                agentId=self.agent_id,
                conversationId=self._conversation_id,
            )
        )
        self._changed("messages")

        if not self._connection.is_connected:
            self._connection.connect()

        frame = ChatMessageFrame(
            content=text,
            message_id=message.id,
            metadata=ChatMessageMetadata(
                user_id=self.user_id,
                organization_id=self.organization_id,
                agent_id=self.agent_id,
                conversation_id=self._conversation_id,
                model=self.model,
            ),
        )
        try:
            self._connection.send(encode_frame(frame))
        except SessionConnectionError as exc:
            logger.warning("Chat message not sent: %s", exc)
            self._error = str(exc)
            failed = message.model_copy(update={"metadata": {**message.metadata, "error": str(exc)}})
            message = self._store.append(failed)
            self._changed("error")
        return message

    def confirm_tool(self, tool_call_id: str, result: Any = None) -> bool:
        """Send the decision for a pending tool call.

        Returns ``False`` when nothing is pending for ``tool_call_id`` or
        the decision could not be sent.
        """
        try:
            frame = self._gate.decision(tool_call_id, result)
        except ConfirmationMismatchError:
            logger.debug("No pending confirmation for %s", tool_call_id)
            return False
        try:
            self._connection.send(encode_frame(frame))
        except SessionConnectionError as exc:
            logger.warning("Tool confirmation not sent: %s", exc)
            self._error = str(exc)
            self._changed("error")
            return False
        self._gate.resolve(tool_call_id)
        self._changed("confirmations")
        return True

    # ── Inbound frames ───────────────────────────────────────────────

    def handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = decode_server_frame(raw)
        except ProtocolError as exc:
            logger.warning("Dropping server frame: %s", exc)
            return
        self.dispatch(frame)

    def dispatch(self, frame: ServerFrame) -> None:
        try:
            self._handlers[frame.type](frame)
        except ProtocolError as exc:
            logger.warning("Dropping %s frame: %s", frame.type, exc)

    def _on_messages(self, frame: MessagesFrame) -> None:
        self._store.replace_all(frame.messages)
        self._gate.reconcile(self._store.messages)
        self._changed("messages")

    def _on_message(self, frame: MessageFrame) -> None:
        message = self._store.append(frame.message)
        self._gate.observe(message)
        self._changed("messages")

    def _on_stream_start(self, frame: StreamStartFrame) -> None:
        self._is_streaming = True
        self._error = None
        self._changed("streaming")

    def _on_stream_end(self, frame: StreamEndFrame) -> None:
        self._is_streaming = False
        self._changed("streaming")

    def _on_conversation_created(self, frame: ConversationCreatedFrame) -> None:
        logger.info("Conversation %s created", frame.conversation_id)
        self._conversation_id = frame.conversation_id
        self._changed("conversation")

    def _on_error(self, frame: ErrorFrame) -> None:
        logger.warning("Server error: %s", frame.message)
        self._error = frame.message
        self._is_streaming = False
        self._changed("error")

    def _on_artifact_start(self, frame: ArtifactStartFrame) -> None:
        self._artifacts.start(frame)
        self._changed("artifacts")

    def _on_artifact_delta(self, frame: ArtifactDeltaFrame) -> None:
        self._artifacts.delta(frame)
        self._changed("artifacts")

    def _on_artifact_complete(self, frame: ArtifactCompleteFrame) -> None:
        self._artifacts.complete(frame)
        self._changed("artifacts")

    def _on_artifact_error(self, frame: ArtifactErrorFrame) -> None:
        self._artifacts.fail(frame)
        self._changed("artifacts")

    # ── Helpers ──────────────────────────────────────────────────────

    def _websocket_transport(self, **callbacks: Any) -> Transport:
        return WebSocketTransport(
            self.url,
            params={
                "agentId": self.agent_id,
                "userId": self.user_id,
                "organizationId": self.organization_id,
                "conversationId": self._conversation_id or "",
                "model": self.model,
            },
            **callbacks,
        )

    def _changed(self, what: str) -> None:
        if self._on_change:
            self._on_change(what)
