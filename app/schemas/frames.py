"""Wire frames exchanged over the chat WebSocket.

Frames are a closed tagged union on ``type`` and are decoded exactly once,
at the transport boundary. Anything that does not validate is a
:class:`~app.errors.ProtocolError`.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union, get_args

from pydantic import Field, TypeAdapter, ValidationError

from app.errors import ProtocolError
from app.schemas.chat import Message, WireModel

# ── Client → Server ──────────────────────────────────────────────────


class ChatMessageMetadata(WireModel):
    user_id: str | None = None
    organization_id: str | None = None
    agent_id: str | None = None
    conversation_id: str | None = None
    model: str | None = None


class ChatMessageFrame(WireModel):
    type: Literal["chat_message"] = "chat_message"
    content: str
    metadata: ChatMessageMetadata = Field(default_factory=ChatMessageMetadata)
    message_id: str | None = None  # id of the optimistic client message


class ToolConfirmationFrame(WireModel):
    type: Literal["tool_confirmation"] = "tool_confirmation"
    tool_call_id: str
    result: Any = None


# ── Server → Client ──────────────────────────────────────────────────


class MessagesFrame(WireModel):
    """Full resync of the rendered log."""

    type: Literal["messages"] = "messages"
    messages: list[Message] = Field(default_factory=list)


class MessageFrame(WireModel):
    """Append one message (or replace it when the id is already known)."""

    type: Literal["message"] = "message"
    message: Message


class StreamStartFrame(WireModel):
    type: Literal["stream_start"] = "stream_start"


class StreamEndFrame(WireModel):
    type: Literal["stream_end"] = "stream_end"


class ConversationCreatedFrame(WireModel):
    type: Literal["conversation_created"] = "conversation_created"
    conversation_id: str


class ErrorFrame(WireModel):
    type: Literal["error"] = "error"
    message: str = "Chat error occurred"


class ArtifactStartFrame(WireModel):
    type: Literal["artifact_start"] = "artifact_start"
    artifact_id: str
    title: str = ""
    kind: str = "document"


class ArtifactDeltaFrame(WireModel):
    type: Literal["artifact_delta"] = "artifact_delta"
    artifact_id: str
    delta: str


class ArtifactCompleteFrame(WireModel):
    type: Literal["artifact_complete"] = "artifact_complete"
    artifact_id: str
    title: str = ""
    kind: str = "document"
    content: str


class ArtifactErrorFrame(WireModel):
    type: Literal["artifact_error"] = "artifact_error"
    artifact_id: str
    error: str = "Unknown error"


ClientFrame = Annotated[
    Union[ChatMessageFrame, ToolConfirmationFrame],
    Field(discriminator="type"),
]

ServerFrame = Annotated[
    Union[
        MessagesFrame,
        MessageFrame,
        StreamStartFrame,
        StreamEndFrame,
        ConversationCreatedFrame,
        ErrorFrame,
        ArtifactStartFrame,
        ArtifactDeltaFrame,
        ArtifactCompleteFrame,
        ArtifactErrorFrame,
    ],
    Field(discriminator="type"),
]

SERVER_FRAME_TYPES = frozenset(
    cls.model_fields["type"].default for cls in get_args(get_args(ServerFrame)[0])
)

_client_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)
_server_adapter: TypeAdapter[ServerFrame] = TypeAdapter(ServerFrame)


def decode_client_frame(raw: str | bytes) -> ClientFrame:
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid client frame: {exc.errors(include_url=False)}") from exc


def decode_server_frame(raw: str | bytes) -> ServerFrame:
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid server frame: {exc.errors(include_url=False)}") from exc


def encode_frame(frame: WireModel) -> str:
    return frame.model_dump_json(by_alias=True, exclude_none=True)
