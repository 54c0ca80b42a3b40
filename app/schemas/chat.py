"""Chat message, part and artifact schemas shared by client and server.

Field names are snake_case in Python and camelCase on the wire
(``toolCallId``, ``providerExecuted``, ...).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Base for everything that crosses the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── Tool states ──────────────────────────────────────────────────────

INPUT_STREAMING = "input-streaming"
CALL = "call"
INPUT_AVAILABLE = "input-available"
OUTPUT_AVAILABLE = "output-available"
OUTPUT_ERROR = "output-error"
RESULT = "result"  # legacy tool-invocation terminal state

INCOMPLETE_TOOL_STATES = frozenset({INPUT_STREAMING, CALL})
TERMINAL_TOOL_STATES = frozenset({OUTPUT_AVAILABLE, OUTPUT_ERROR, RESULT})


# ── Parts ────────────────────────────────────────────────────────────


class TextPart(WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolPart(WireModel):
    """Canonical tool call/result part. ``args`` is the legacy name of ``input``."""

    type: Literal["tool"] = "tool"
    tool_call_id: str | None = None
    tool_name: str = ""
    input: Any = None
    args: Any = None
    output: Any = None
    state: str = INPUT_AVAILABLE
    provider_executed: bool | None = None


class ToolInvocationPart(WireModel):
    """Legacy tool part shape (``args`` / ``result``)."""

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str | None = None
    tool_name: str = ""
    args: Any = None
    result: Any = None
    state: str = CALL


class ArtifactPart(WireModel):
    """Reference to an ArtifactStream owned by the session."""

    type: Literal["artifact"] = "artifact"
    artifact_id: str
    title: str = ""
    kind: str = "document"


Part = Annotated[
    Union[TextPart, ToolPart, ToolInvocationPart, ArtifactPart],
    Field(discriminator="type"),
]

_PART_TYPES = {"text", "tool", "tool-invocation", "artifact"}


def _coerce_part(raw: Any) -> Any:
    """Map ``tool-{toolName}`` parts onto the canonical ``tool`` type."""
    if not isinstance(raw, dict):
        return raw
    part_type = raw.get("type")
    if isinstance(part_type, str) and part_type.startswith("tool-") and part_type not in _PART_TYPES:
        coerced = dict(raw)
        coerced["type"] = "tool"
        coerced.setdefault("toolName", part_type[len("tool-"):])
        return coerced
    return raw


def is_tool_part(part: Any) -> bool:
    return isinstance(part, (ToolPart, ToolInvocationPart))


def tool_input(part: ToolPart | ToolInvocationPart) -> Any:
    if isinstance(part, ToolPart) and part.input is not None:
        return part.input
    return part.args


def tool_output(part: ToolPart | ToolInvocationPart) -> Any:
    if isinstance(part, ToolPart):
        return part.output
    return part.result


# ── Messages ─────────────────────────────────────────────────────────


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Message(WireModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant", "system"]
    parts: list[Part] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=lambda: {"createdAt": _now_iso()})
    content: str | None = None  # legacy plain-string body

    @model_validator(mode="before")
    @classmethod
    def _known_parts_only(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("parts"), list):
            return data
        parts = []
        for raw in data["parts"]:
            raw = _coerce_part(raw)
            if isinstance(raw, dict) and raw.get("type") not in _PART_TYPES:
                logger.debug("Skipping unsupported part type %r", raw.get("type"))
                continue
            parts.append(raw)
        return {**data, "parts": parts}

    @property
    def text(self) -> str:
        """Concatenated text parts (falls back to legacy ``content``)."""
        texts = [p.text for p in self.parts if isinstance(p, TextPart)]
        if texts:
            return "".join(texts)
        return self.content or ""

    def tool_parts(self) -> list[ToolPart | ToolInvocationPart]:
        return [p for p in self.parts if is_tool_part(p)]

    def find_tool_part(self, tool_call_id: str) -> ToolPart | ToolInvocationPart | None:
        for part in self.tool_parts():
            if part.tool_call_id == tool_call_id:
                return part
        return None


def user_message(text: str, **metadata: Any) -> Message:
    return Message(
        role="user",
        parts=[TextPart(text=text)],
        metadata={"createdAt": _now_iso(), **metadata},
    )


# ── Artifacts & confirmations ────────────────────────────────────────


class ArtifactState(StrEnum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


class ArtifactStream(WireModel):
    artifact_id: str
    title: str = ""
    kind: str = "document"
    buffer: str = ""
    state: ArtifactState = ArtifactState.PENDING
    error: str | None = None
    # True when the authoritative content differed from accumulated deltas
    mismatch: bool = False


class PendingToolConfirmation(WireModel):
    tool_call_id: str
    tool_name: str
    input: Any = None
