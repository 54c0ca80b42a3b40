"""Pre-upstream rewrite of the message log.

:func:`normalize_messages` turns the rendered log into a form the target
model provider accepts. It works on a deep copy, never touches the durable
log, and is idempotent: ``normalize(normalize(x, m), m) == normalize(x, m)``.

Steps, in order:

1. drop tool parts that cannot be sent (incomplete call without input,
   or no ``toolCallId``);
2. canonicalize tool parts to a single ``input`` field, backfilling empty
   input from the output via a per-tool recovery strategy;
3. mark results for in-turn placement on Anthropic-family models;
4. merge consecutive assistant messages;
5. drop messages that are empty after all of the above.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from app.errors import NormalizationError
from app.schemas.chat import (
    INCOMPLETE_TOOL_STATES,
    OUTPUT_AVAILABLE,
    RESULT,
    Message,
    TextPart,
    ToolInvocationPart,
    ToolPart,
    is_tool_part,
    tool_input,
)

logger = logging.getLogger(__name__)

ANTHROPIC = "anthropic"
OPENAI = "openai"
XAI = "xai"

_FAMILY_PREFIXES = {
    "claude": ANTHROPIC,
    "grok": XAI,
}


def provider_family(model: str) -> str:
    """Map a model name (``claude-3-5-sonnet``, ``openai/gpt-4o``, ...) to its provider family."""
    name = model.strip().lower()
    if "/" in name:
        prefix, _, rest = name.partition("/")
        if prefix in (ANTHROPIC, OPENAI, XAI):
            return prefix
        name = rest
    for prefix, family in _FAMILY_PREFIXES.items():
        if name.startswith(prefix):
            return family
    return OPENAI


def places_results_in_turn(model: str) -> bool:
    """True when tool results must sit in the same assistant turn as the call."""
    return provider_family(model) == ANTHROPIC


# ── Input recovery strategies ────────────────────────────────────────

InputRecovery = Callable[[Any], dict[str, Any] | None]

_INPUT_RECOVERY: dict[str, InputRecovery] = {}


def register_input_recovery(tool_name: str) -> Callable[[InputRecovery], InputRecovery]:
    """Declare how to rebuild a tool's lost input from its output.

    Tools without a registered strategy keep an empty input.
    """

    def decorator(fn: InputRecovery) -> InputRecovery:
        _INPUT_RECOVERY[tool_name] = fn
        return fn

    return decorator


@register_input_recovery("createDocument")
def _recover_create_document(output: Any) -> dict[str, Any] | None:
    if not isinstance(output, dict) or not output.get("title"):
        return None
    recovered = {"title": output["title"], "kind": output.get("kind") or "document"}
    if output.get("description"):
        recovered["description"] = output["description"]
    return recovered


# ── Steps ────────────────────────────────────────────────────────────


def _is_unfixable(part: ToolPart | ToolInvocationPart) -> bool:
    if not part.tool_call_id:
        return True
    return part.state in INCOMPLETE_TOOL_STATES and tool_input(part) is None


def _filter_tool_parts(message: Message) -> Message:
    parts = [p for p in message.parts if not (is_tool_part(p) and _is_unfixable(p))]
    if len(parts) != len(message.parts):
        logger.debug(
            "Removed %d unsendable tool part(s) from message %s",
            len(message.parts) - len(parts), message.id,
        )
        message.parts = parts
    return message


def _is_empty_input(value: Any) -> bool:
    return value is None or value == {}


def _canonical_tool_part(part: ToolPart | ToolInvocationPart) -> ToolPart:
    if isinstance(part, ToolInvocationPart):
        part = ToolPart(
            tool_call_id=part.tool_call_id,
            tool_name=part.tool_name,
            input=part.args,
            output=part.result,
            state=OUTPUT_AVAILABLE if part.state == RESULT else part.state,
        )
    value = part.input if part.input is not None else part.args
    if value is None:
        value = {}
    if _is_empty_input(value) and part.output is not None:
        recover = _INPUT_RECOVERY.get(part.tool_name)
        recovered = recover(part.output) if recover else None
        if recovered:
            logger.debug("Recovered input for %s (%s) from output", part.tool_name, part.tool_call_id)
            value = recovered
    return part.model_copy(update={"input": value, "args": None})


def _canonicalize(message: Message) -> Message:
    parts = [_canonical_tool_part(p) if is_tool_part(p) else p for p in message.parts]
    if not parts and message.content:
        # Legacy plain-string body becomes a text part
        parts = [TextPart(text=message.content)]
        message.content = None
    message.parts = parts
    return message


def _place_results(message: Message, *, in_turn: bool) -> Message:
    parts = []
    for part in message.parts:
        if isinstance(part, ToolPart):
            flag = True if in_turn and part.output is not None else None
            if part.provider_executed != flag:
                part = part.model_copy(update={"provider_executed": flag})
        parts.append(part)
    message.parts = parts
    return message


def _merge_assistant_runs(messages: Iterable[Message]) -> list[Message]:
    merged: list[Message] = []
    for message in messages:
        if merged and message.role == "assistant" and merged[-1].role == "assistant":
            head = merged[-1]
            merged[-1] = head.model_copy(update={"parts": [*head.parts, *message.parts]})
        else:
            merged.append(message)
    return merged


def _has_text(message: Message) -> bool:
    if message.content and message.content.strip():
        return True
    return any(isinstance(p, TextPart) and p.text.strip() for p in message.parts)


def _has_valid_tool_part(message: Message) -> bool:
    for part in message.parts:
        if isinstance(part, ToolInvocationPart):
            if part.tool_call_id and part.tool_name and part.args is not None:
                return True
        elif isinstance(part, ToolPart):
            if part.tool_call_id and (part.input is not None or part.output is not None):
                return True
    return False


def _check_sendable(message: Message) -> None:
    if message.role == "system":
        return
    if message.role == "user":
        if not _has_text(message):
            raise NormalizationError(f"user message {message.id} has no text")
        return
    if not any(isinstance(p, TextPart) and p.text.strip() for p in message.parts) and not _has_valid_tool_part(message):
        raise NormalizationError(f"assistant message {message.id} has no text or valid tool part")


def _drop_empty(messages: Iterable[Message]) -> list[Message]:
    kept = []
    for message in messages:
        try:
            _check_sendable(message)
        except NormalizationError as exc:
            logger.debug("Dropping message from upstream copy: %s", exc)
            continue
        kept.append(message)
    return kept


# ── Entry point ──────────────────────────────────────────────────────


def normalize_messages(messages: Iterable[Message], model: str) -> list[Message]:
    """Return a provider-legal copy of ``messages`` for ``model``."""
    in_turn = places_results_in_turn(model)
    working = [m.model_copy(deep=True) for m in messages]
    working = [_filter_tool_parts(m) for m in working]
    working = [_canonicalize(m) for m in working]
    working = [_place_results(m, in_turn=in_turn) for m in working]
    working = _merge_assistant_runs(working)
    kept = _drop_empty(working)
    # Dropping a message can make two assistant turns adjacent
    return _merge_assistant_runs(kept)
