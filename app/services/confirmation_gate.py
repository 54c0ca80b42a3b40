"""Human-in-the-loop gate for tool calls that need user approval.

A gated call is never executed or resolved locally: :meth:`on_tool_call`
records a :class:`PendingToolConfirmation` and answers ``None`` ("no result
yet"). The pending entry lives until a decision for it is sent.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from app.config import settings
from app.errors import ConfirmationMismatchError
from app.schemas.chat import (
    TERMINAL_TOOL_STATES,
    Message,
    PendingToolConfirmation,
    ToolInvocationPart,
    ToolPart,
    tool_input,
    tool_output,
)
from app.schemas.frames import ToolConfirmationFrame

logger = logging.getLogger(__name__)

DEFAULT_DECISION = {"confirmed": True}


def _is_settled(part: ToolPart | ToolInvocationPart) -> bool:
    return part.state in TERMINAL_TOOL_STATES or tool_output(part) is not None


class ToolConfirmationGate:
    def __init__(self, tools_requiring_confirmation: Iterable[str] | None = None) -> None:
        if tools_requiring_confirmation is None:
            tools_requiring_confirmation = settings.tools_requiring_confirmation
        self.tool_names = frozenset(tools_requiring_confirmation)
        self._pending: dict[str, PendingToolConfirmation] = {}

    @property
    def pending(self) -> dict[str, PendingToolConfirmation]:
        return dict(self._pending)

    def requires_confirmation(self, tool_name: str) -> bool:
        return tool_name in self.tool_names

    def on_tool_call(self, part: ToolPart | ToolInvocationPart) -> Any:
        """Decide what to do with an inbound tool call.

        Always returns ``None``: tools are executed by the server, and gated
        tools wait for :meth:`decision`.
        """
        if not part.tool_call_id or not self.requires_confirmation(part.tool_name):
            return None
        if _is_settled(part):
            self._pending.pop(part.tool_call_id, None)
            return None
        if part.tool_call_id not in self._pending:
            logger.info("Tool %s (%s) awaiting confirmation", part.tool_name, part.tool_call_id)
            self._pending[part.tool_call_id] = PendingToolConfirmation(
                tool_call_id=part.tool_call_id,
                tool_name=part.tool_name,
                input=tool_input(part),
            )
        return None

    def observe(self, message: Message) -> None:
        for part in message.tool_parts():
            self.on_tool_call(part)

    def reconcile(self, messages: Iterable[Message]) -> None:
        """Rebuild the pending set from a full resync."""
        self._pending.clear()
        for message in messages:
            self.observe(message)

    def decision(self, tool_call_id: str, result: Any = None) -> ToolConfirmationFrame:
        """Build the decision frame for a pending call.

        Raises :class:`ConfirmationMismatchError` when nothing is pending
        for ``tool_call_id``.
        """
        if tool_call_id not in self._pending:
            raise ConfirmationMismatchError(f"No pending confirmation for {tool_call_id}")
        return ToolConfirmationFrame(
            tool_call_id=tool_call_id,
            result=DEFAULT_DECISION if result is None else result,
        )

    def resolve(self, tool_call_id: str) -> PendingToolConfirmation | None:
        return self._pending.pop(tool_call_id, None)

    def clear(self) -> None:
        self._pending.clear()
