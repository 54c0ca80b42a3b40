"""Server-side tool registry.

Tools run on the server after the agent emits a call. Tools listed in
``settings.tools_requiring_confirmation`` only run once the user approves.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]

ARTIFACT_TOOL = "createDocument"
ARTIFACT_KINDS = ("document", "code", "html", "react")


class UnknownToolError(KeyError):
    pass


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolExecutor] = {}

    def register(self, name: str) -> Callable[[ToolExecutor], ToolExecutor]:
        def decorator(fn: ToolExecutor) -> ToolExecutor:
            self._tools[name] = fn
            return fn

        return decorator

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    async def execute(self, name: str, tool_input: dict[str, Any] | None) -> Any:
        executor = self._tools.get(name)
        if executor is None:
            raise UnknownToolError(name)
        logger.info("Executing tool %s", name)
        return await executor(dict(tool_input or {}))


registry = ToolRegistry()


@registry.register(ARTIFACT_TOOL)
async def create_document(tool_input: dict[str, Any]) -> dict[str, Any]:
    """Acknowledge an artifact request; content is streamed separately."""
    title = tool_input.get("title") or "Untitled"
    kind = tool_input.get("kind") if tool_input.get("kind") in ARTIFACT_KINDS else "document"
    result = {
        "message": f'Creating {kind} artifact: "{title}"',
        "title": title,
        "kind": kind,
    }
    if tool_input.get("description"):
        result["description"] = tool_input["description"]
    return result
