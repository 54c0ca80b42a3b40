"""Message normalizer tests."""

import pytest

from app.schemas.chat import (
    CALL,
    INPUT_STREAMING,
    OUTPUT_AVAILABLE,
    RESULT,
    ArtifactPart,
    Message,
    TextPart,
    ToolInvocationPart,
    ToolPart,
    user_message,
)
from app.services.normalizer import (
    ANTHROPIC,
    OPENAI,
    XAI,
    normalize_messages,
    places_results_in_turn,
    provider_family,
)

MODELS = ["claude-3-5-sonnet-20241022", "gpt-4o", "grok-2", "anthropic/claude-3-haiku", "openai/gpt-4.1-mini"]


def assistant(message_id, *parts, **kwargs):
    return Message(id=message_id, role="assistant", parts=list(parts), **kwargs)


def tool(tool_call_id="c1", tool_name="createDocument", **kwargs):
    return ToolPart(tool_call_id=tool_call_id, tool_name=tool_name, **kwargs)


def sample_log():
    return [
        Message(id="s1", role="system", parts=[TextPart(text="be nice")]),
        user_message("make a doc"),
        assistant("a1", TextPart(text="On it")),
        assistant(
            "a2",
            tool("c1", output={"message": "ok", "title": "Plan", "kind": "document"}, state=OUTPUT_AVAILABLE),
            ArtifactPart(artifact_id="art1", title="Plan"),
        ),
        assistant("a3", ToolInvocationPart(tool_call_id="c2", tool_name="search", args={"q": "x"}, result=[1], state=RESULT)),
        assistant("a4", tool("c3", state=CALL)),
        assistant("a5"),
        user_message("   "),
        user_message("thanks"),
        assistant("a6", tool("c4", tool_name="sendEmail", input={"to": "x"})),
    ]


@pytest.mark.parametrize(
    ("model", "family"),
    [
        ("claude-3-5-sonnet-20241022", ANTHROPIC),
        ("Claude-3-opus", ANTHROPIC),
        ("anthropic/claude-3-haiku", ANTHROPIC),
        ("gpt-4o", OPENAI),
        ("o3-mini", OPENAI),
        ("grok-2", XAI),
        ("xai/grok-beta", XAI),
        ("openrouter/claude-3", ANTHROPIC),
    ],
)
def test_provider_family(model, family):
    assert provider_family(model) == family


def test_only_anthropic_places_results_in_turn():
    assert places_results_in_turn("claude-3-5-sonnet")
    assert not places_results_in_turn("gpt-4o")
    assert not places_results_in_turn("grok-2")


@pytest.mark.parametrize("model", MODELS)
def test_idempotent(model):
    once = normalize_messages(sample_log(), model)
    twice = normalize_messages(once, model)
    assert [m.to_wire() for m in twice] == [m.to_wire() for m in once]


@pytest.mark.parametrize("model", MODELS)
def test_no_orphan_tool_parts(model):
    log = sample_log()
    log.append(assistant("a7", TextPart(text="x")))
    # Bypass validation to simulate a part that slipped in without an id
    log[-1].parts.append(ToolPart(tool_name="orphan", input={}))
    for message in normalize_messages(log, model):
        for part in message.tool_parts():
            assert part.tool_call_id


@pytest.mark.parametrize("model", MODELS)
def test_provider_flag_invariant(model):
    in_turn = places_results_in_turn(model)
    for message in normalize_messages(sample_log(), model):
        for part in message.tool_parts():
            if in_turn and part.output is not None:
                assert part.provider_executed is True
            if not in_turn:
                assert part.provider_executed is not True


def test_provider_flag_is_cleared_for_non_anthropic_models():
    log = [user_message("hi"), assistant("a1", tool(input={"title": "T"}, output={"ok": 1}, provider_executed=True))]
    out = normalize_messages(log, "gpt-4o")
    assert out[1].parts[0].provider_executed is None


@pytest.mark.parametrize("model", MODELS)
def test_incomplete_call_part_is_removed(model):
    log = [user_message("hi"), assistant("a1", TextPart(text="thinking"), tool("c9", state=CALL))]
    out = normalize_messages(log, model)
    assert all(p.tool_call_id != "c9" for m in out for p in m.tool_parts())
    assert out[1].text == "thinking"


def test_streaming_part_with_input_survives():
    log = [user_message("hi"), assistant("a1", tool("c1", state=INPUT_STREAMING, input={"title": "T"}))]
    out = normalize_messages(log, "gpt-4o")
    assert out[1].parts[0].tool_call_id == "c1"


def test_consecutive_assistant_messages_merge_per_run():
    log = [
        user_message("one"),
        assistant("a1", TextPart(text="x")),
        assistant("a2", TextPart(text="y")),
        assistant("a3", TextPart(text="z")),
        user_message("two"),
        assistant("a4", TextPart(text="w")),
        assistant("a5", TextPart(text="v")),
    ]
    out = normalize_messages(log, "gpt-4o")
    assert [m.role for m in out] == ["user", "assistant", "user", "assistant"]
    assert out[1].id == "a1"
    assert [p.text for p in out[1].parts] == ["x", "y", "z"]
    assert [p.text for p in out[3].parts] == ["w", "v"]


def test_legacy_args_become_input():
    log = [
        user_message("hi"),
        assistant("a1", ToolInvocationPart(tool_call_id="c1", tool_name="search", args={"q": "x"}, result=[1], state=RESULT)),
        assistant("a2", tool("c2", tool_name="search", args={"q": "y"})),
    ]
    out = normalize_messages(log, "gpt-4o")
    first, second = out[1].parts
    assert isinstance(first, ToolPart)
    assert first.input == {"q": "x"}
    assert first.output == [1]
    assert first.state == OUTPUT_AVAILABLE
    assert second.input == {"q": "y"}
    assert second.args is None


def test_input_is_recovered_from_create_document_output():
    log = [
        user_message("doc please"),
        assistant("a1", tool("c1", input={}, output={"message": "Creating", "title": "Plan", "kind": "code"})),
    ]
    out = normalize_messages(log, "claude-3-5-sonnet")
    assert out[1].parts[0].input == {"title": "Plan", "kind": "code"}


def test_input_without_recovery_strategy_stays_empty():
    log = [user_message("x"), assistant("a1", tool("c1", tool_name="search", output={"title": "no"}))]
    out = normalize_messages(log, "gpt-4o")
    assert out[1].parts[0].input == {}


def test_empty_messages_are_dropped():
    log = [
        Message(id="s1", role="system"),
        user_message("  "),
        Message(id="u2", role="user", content="legacy body"),
        assistant("a1"),
        assistant("a2", TextPart(text="   ")),
    ]
    out = normalize_messages(log, "gpt-4o")
    assert [m.id for m in out] == ["s1", "u2"]
    assert out[1].parts[0].text == "legacy body"


def test_assistant_with_only_output_survives():
    log = [user_message("x"), assistant("a1", tool("c1", tool_name="search", output={"hits": 0}))]
    out = normalize_messages(log, "gpt-4o")
    assert [m.id for m in out] == [log[0].id, "a1"]


def test_durable_log_is_not_mutated():
    log = sample_log()
    before = [m.to_wire() for m in log]
    normalize_messages(log, "claude-3-5-sonnet")
    assert [m.to_wire() for m in log] == before
