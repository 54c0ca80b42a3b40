"""Serialize a normalized log into provider-shaped messages.

Tool results flagged ``providerExecuted`` stay inside the assistant
message right after their call; all other results follow the assistant
message as a separate ``tool`` role message. Tool results carried by a
user message are placed before its text.
"""

from __future__ import annotations

from typing import Any

from app.schemas.chat import ArtifactPart, Message, TextPart, ToolInvocationPart, ToolPart


def _tool_call(part: ToolPart) -> dict[str, Any]:
    return {
        "type": "tool-call",
        "toolCallId": part.tool_call_id,
        "toolName": part.tool_name,
        "input": part.input if part.input is not None else {},
    }


def _tool_result(part: ToolPart) -> dict[str, Any]:
    return {
        "type": "tool-result",
        "toolCallId": part.tool_call_id,
        "toolName": part.tool_name,
        "output": part.output,
    }


def _user_content(message: Message) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    texts: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, ToolInvocationPart):
            part = ToolPart(tool_call_id=part.tool_call_id, tool_name=part.tool_name, output=part.result)
        if isinstance(part, TextPart):
            if part.text:
                texts.append({"type": "text", "text": part.text})
        elif isinstance(part, ToolPart) and part.output is not None:
            results.append(_tool_result(part))
    if not texts and message.content:
        texts = [{"type": "text", "text": message.content}]
    # Results before text
    return results + texts


def _assistant_content(message: Message) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    content: list[dict[str, Any]] = []
    separate: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, ToolInvocationPart):
            part = ToolPart(
                tool_call_id=part.tool_call_id,
                tool_name=part.tool_name,
                input=part.args,
                output=part.result,
            )
        if isinstance(part, TextPart):
            if part.text:
                content.append({"type": "text", "text": part.text})
        elif isinstance(part, ToolPart):
            content.append(_tool_call(part))
            if part.output is not None:
                if part.provider_executed:
                    content.append(_tool_result(part))
                else:
                    separate.append(_tool_result(part))
        elif isinstance(part, ArtifactPart):
            content.append({"type": "text", "text": f"[{part.kind} artifact: {part.title}]"})
    return content, separate


def to_model_messages(messages: list[Message]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            out.append({"role": "system", "content": message.text})
        elif message.role == "user":
            out.append({"role": "user", "content": _user_content(message)})
        else:
            content, separate = _assistant_content(message)
            out.append({"role": "assistant", "content": content})
            if separate:
                out.append({"role": "tool", "content": separate})
    return out
