"""Ordered, append-friendly log of chat messages.

Single source of truth for what is rendered and what is sent upstream.
Every mutation builds the new :class:`Message` first and swaps it in with
one assignment, so a reader never observes a half-applied update.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from app.config import settings
from app.schemas.chat import ArtifactPart, Message, is_tool_part

logger = logging.getLogger(__name__)


def _part_key(part: Any) -> str | None:
    if is_tool_part(part):
        return part.tool_call_id
    if isinstance(part, ArtifactPart):
        return part.artifact_id
    return None


def _drop_orphan_tool_parts(message: Message) -> Message:
    parts = [p for p in message.parts if not (is_tool_part(p) and not p.tool_call_id)]
    if len(parts) == len(message.parts):
        return message
    logger.warning(
        "Dropped %d tool part(s) without toolCallId from message %s",
        len(message.parts) - len(parts), message.id,
    )
    return message.model_copy(update={"parts": parts})


class MessageStore:
    def __init__(self, messages: Iterable[Message] = (), *, max_messages: int | None = None) -> None:
        self.max_messages = settings.max_messages if max_messages is None else max_messages
        self._messages: list[Message] = []
        self._index: dict[str, int] = {}
        self.evicted = 0
        self.replace_all(messages)

    # ── Read-only view ───────────────────────────────────────────────

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))

    def get(self, message_id: str) -> Message | None:
        pos = self._index.get(message_id)
        return None if pos is None else self._messages[pos]

    # ── Mutation ─────────────────────────────────────────────────────

    def append(self, message: Message) -> Message:
        """Append ``message``; a message with a known id is replaced in place."""
        message = _drop_orphan_tool_parts(message)
        pos = self._index.get(message.id)
        if pos is not None:
            self._messages[pos] = message
            return message
        self._messages.append(message)
        self._index[message.id] = len(self._messages) - 1
        self._enforce_retention()
        return message

    def replace_all(self, messages: Iterable[Message]) -> None:
        fresh: list[Message] = []
        index: dict[str, int] = {}
        for message in messages:
            message = _drop_orphan_tool_parts(message)
            if message.id in index:
                fresh[index[message.id]] = message
                continue
            index[message.id] = len(fresh)
            fresh.append(message)
        self._messages, self._index = fresh, index
        self._enforce_retention()

    def update_part(self, message_id: str, part_key: str, patch: dict[str, Any]) -> Message | None:
        """Patch the part identified by toolCallId or artifactId.

        Returns the updated message, or ``None`` when the message or part
        is unknown.
        """
        pos = self._index.get(message_id)
        if pos is None:
            logger.warning("update_part: unknown message %s", message_id)
            return None
        message = self._messages[pos]
        parts = list(message.parts)
        for i, part in enumerate(parts):
            if _part_key(part) == part_key:
                parts[i] = part.model_copy(update=patch)
                break
        else:
            logger.warning("update_part: no part %s in message %s", part_key, message_id)
            return None
        updated = message.model_copy(update={"parts": parts})
        self._messages[pos] = updated
        return updated

    def find_by_part(self, part_key: str) -> Message | None:
        for message in reversed(self._messages):
            if any(_part_key(p) == part_key for p in message.parts):
                return message
        return None

    def clear(self) -> None:
        self._messages, self._index = [], {}

    def _enforce_retention(self) -> None:
        overflow = len(self._messages) - self.max_messages
        if self.max_messages <= 0 or overflow <= 0:
            return
        self._messages = self._messages[overflow:]
        self._index = {m.id: i for i, m in enumerate(self._messages)}
        self.evicted += overflow
        logger.info("Evicted %d oldest message(s) (cap %d)", overflow, self.max_messages)
