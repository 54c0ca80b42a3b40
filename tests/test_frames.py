"""Wire frame decoding/encoding tests."""

import json

import pytest

from app.errors import ProtocolError
from app.schemas.chat import Message, TextPart, ToolPart
from app.schemas.frames import (
    SERVER_FRAME_TYPES,
    ArtifactDeltaFrame,
    ChatMessageFrame,
    ChatMessageMetadata,
    MessageFrame,
    ToolConfirmationFrame,
    decode_client_frame,
    decode_server_frame,
    encode_frame,
)


def test_chat_message_frame_uses_camel_case_on_the_wire():
    frame = ChatMessageFrame(
        content="hi",
        metadata=ChatMessageMetadata(user_id="u1", organization_id="o1", agent_id="a1"),
    )
    data = json.loads(encode_frame(frame))
    assert data == {
        "type": "chat_message",
        "content": "hi",
        "metadata": {"userId": "u1", "organizationId": "o1", "agentId": "a1"},
    }


def test_decode_tool_confirmation_without_result():
    frame = decode_client_frame('{"type": "tool_confirmation", "toolCallId": "call_1"}')
    assert isinstance(frame, ToolConfirmationFrame)
    assert frame.tool_call_id == "call_1"
    assert frame.result is None


def test_decode_server_message_frame_with_tool_part():
    raw = json.dumps({
        "type": "message",
        "message": {
            "id": "m1",
            "role": "assistant",
            "parts": [
                {"type": "text", "text": "Sure"},
                {"type": "tool-createDocument", "toolCallId": "c1", "input": {"title": "T"}},
                {"type": "step-start"},
            ],
        },
    })
    frame = decode_server_frame(raw)
    assert isinstance(frame, MessageFrame)
    parts = frame.message.parts
    assert len(parts) == 2
    assert isinstance(parts[0], TextPart)
    assert isinstance(parts[1], ToolPart)
    assert parts[1].tool_name == "createDocument"


def test_decode_artifact_delta():
    frame = decode_server_frame('{"type": "artifact_delta", "artifactId": "a1", "delta": "foo"}')
    assert isinstance(frame, ArtifactDeltaFrame)
    assert frame.artifact_id == "a1"
    assert frame.delta == "foo"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '{"type": "bogus"}',
        '{"type": "artifact_delta", "artifactId": "a1"}',
        '{"content": "no type"}',
    ],
)
def test_malformed_server_frames_raise_protocol_error(raw):
    with pytest.raises(ProtocolError):
        decode_server_frame(raw)


def test_client_frames_are_not_server_frames():
    with pytest.raises(ProtocolError):
        decode_server_frame('{"type": "chat_message", "content": "hi"}')


def test_server_frame_types():
    assert SERVER_FRAME_TYPES == {
        "messages",
        "message",
        "stream_start",
        "stream_end",
        "conversation_created",
        "error",
        "artifact_start",
        "artifact_delta",
        "artifact_complete",
        "artifact_error",
    }


def test_message_defaults():
    message = Message(role="user", parts=[TextPart(text="hello")])
    assert message.id
    assert "createdAt" in message.metadata
    assert message.text == "hello"
