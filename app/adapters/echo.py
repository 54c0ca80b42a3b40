"""Development generation service that needs no model provider.

Echoes the last user message word by word. ``/doc <title>`` asks for a
``createDocument`` tool call and ``/email <to>`` a ``sendEmail`` call, so the
artifact and confirmation paths can be exercised end to end.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from typing import Any

from app.adapters.base import GenerationService
from app.services.tools import ARTIFACT_TOOL

DOC_COMMAND = "/doc "
EMAIL_COMMAND = "/email "


def _last_user_text(messages: list[dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message["role"] != "user":
            continue
        return " ".join(c.get("text", "") for c in message.get("content", []) if c.get("type") == "text")
    return ""


def _after_tool_result(messages: list[dict[str, Any]]) -> bool:
    if not messages:
        return False
    last = messages[-1]
    if last["role"] == "tool":
        return True
    return last["role"] == "assistant" and any(
        c.get("type") == "tool-result" for c in last.get("content", [])
    )


class EchoGenerationService(GenerationService):
    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay

    async def _words(self, text: str) -> AsyncIterator[str]:
        words = text.split(" ")
        for i, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if i == len(words) - 1 else f"{word} "

    async def generate(self, messages: list[dict[str, Any]], *, model: str) -> AsyncIterator[dict[str, Any]]:
        if _after_tool_result(messages):
            async for delta in self._words("Done."):
                yield {"type": "text-delta", "delta": delta}
            yield {"type": "finish", "finishReason": "stop"}
            return

        text = _last_user_text(messages).strip()
        if text.startswith(EMAIL_COMMAND):
            yield {
                "type": "tool-call",
                "toolCallId": f"call_{uuid.uuid4().hex[:12]}",
                "toolName": "sendEmail",
                "input": {"to": text[len(EMAIL_COMMAND):].strip()},
            }
            yield {"type": "finish", "finishReason": "tool-calls"}
            return

        if text.startswith(DOC_COMMAND):
            title = text[len(DOC_COMMAND):].strip() or "Untitled"
            yield {
                "type": "tool-call",
                "toolCallId": f"call_{uuid.uuid4().hex[:12]}",
                "toolName": ARTIFACT_TOOL,
                "input": {"title": title, "kind": "document"},
            }
            yield {"type": "finish", "finishReason": "tool-calls"}
            return

        async for delta in self._words(f"You said: {text}" if text else "Hello!"):
            yield {"type": "text-delta", "delta": delta}
        yield {"type": "finish", "finishReason": "stop"}

    async def generate_artifact(
        self, *, title: str, kind: str, description: str | None, model: str
    ) -> AsyncIterator[str]:
        body = f"# {title}\n\n{description or 'Draft ' + kind + ' generated locally.'}\n"
        for line in body.splitlines(keepends=True):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield line
