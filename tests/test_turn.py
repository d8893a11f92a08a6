"""Tests for the chat turn orchestration loop."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.chat.events import OutputEvent
from src.chat.turn import ChatTurn, TurnState, run_turn
from src.llm.events import Terminal, TextDelta, ToolCall, ToolStart, ToolStop
from src.tools.base import ToolResult
from src.tools.registry import registry as tool_registry

# -- Helpers -------------------------------------------------------------------


class ScriptedBackend:
    """Stand-in for ``stream_events`` that plays one scripted round per call.

    Each round is a list of backend events; an Exception instance in the
    list is raised at that point of the stream.
    """

    def __init__(self, *rounds: list[Any]) -> None:
        self._rounds = list(rounds)
        self.requests: list[dict[str, Any]] = []

    def __call__(self, messages, *, system, tools):
        self.requests.append({"messages": messages, "system": system, "tools": tools})
        events = self._rounds.pop(0)

        async def _gen():
            for event in events:
                if isinstance(event, Exception):
                    raise event
                yield event

        return _gen()


def _tool_round(*calls: ToolCall, text: str = "") -> list[Any]:
    events: list[Any] = [TextDelta(text)] if text else []
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    for call in calls:
        events.append(ToolStart(id=call.id, name=call.name))
        events.append(ToolStop(call=call))
        content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
    events.append(Terminal(stop_reason="tool_use", content=content))
    return events


def _text_round(*chunks: str) -> list[Any]:
    return [
        *(TextDelta(c) for c in chunks),
        Terminal(stop_reason="end_turn", content=[{"type": "text", "text": "".join(chunks)}]),
    ]


async def _collect(conversation_id: str, text: str, **kwargs) -> list[OutputEvent]:
    return [e async for e in ChatTurn(conversation_id, text, **kwargs).events()]


def _types(events: list[OutputEvent]) -> list[str]:
    return [e.type for e in events]


# -- Plain text turns ----------------------------------------------------------


async def test_text_only_turn_streams_and_persists(store) -> None:
    backend = ScriptedBackend(_text_round("Hel", "lo"))

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "Hi")

    assert events == [OutputEvent.text("Hel"), OutputEvent.text("lo"), OutputEvent.done()]

    messages = await store.list_messages("c1")
    assert [(m.role, m.content) for m in messages] == [("user", "Hi"), ("assistant", "Hello")]
    assert messages[1].tool_calls is None
    assert messages[1].tool_results is None


async def test_turn_creates_missing_conversation(store) -> None:
    backend = ScriptedBackend(_text_round("ok"))

    with patch("src.chat.turn.stream_events", backend):
        await _collect("brand-new", "Hi")

    conv = await store.get_conversation("brand-new")
    assert conv is not None
    assert conv.title == "New Conversation"


async def test_request_includes_history_memories_and_tools(store) -> None:
    await store.append_message("c1", "user", "earlier")
    await store.append_message("c1", "assistant", "reply")
    await store.upsert_memory("c1", "name", "Ada")
    backend = ScriptedBackend(_text_round("ok"))

    with patch("src.chat.turn.stream_events", backend):
        await _collect("c1", "now")

    request = backend.requests[0]
    assert request["messages"] == [
        {"role": "user", "content": "earlier"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "now"},
    ]
    assert "- name: Ada" in request["system"]
    assert {t["name"] for t in request["tools"]} >= {"recall", "remember", "browse_web"}


async def test_text_concatenation_equals_persisted_content(store) -> None:
    chunks = ["The ", "quick ", "brown ", "", "fox."]
    backend = ScriptedBackend(_text_round(*chunks))

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "go")

    streamed = "".join(e.content for e in events if e.type == "text")
    (_, assistant) = await store.list_messages("c1")
    assert streamed == assistant.content == "The quick brown fox."


# -- Tool rounds ---------------------------------------------------------------


async def test_failed_tool_result_is_fed_back_and_turn_completes(store) -> None:
    call = ToolCall(id="toolu_1", name="recall", input={"key": "favorite_color"})
    backend = ScriptedBackend(
        _tool_round(call),
        _text_round("I don't know yet."),
    )

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "What's my favorite color?")

    assert _types(events) == ["tool_start", "tool_executing", "tool_result", "text", "done"]
    assert events[1].input == {"key": "favorite_color"}
    assert events[2].result["success"] is False
    assert "No memory found" in events[2].result["error"]

    continuation = backend.requests[1]["messages"]
    assert continuation[-2]["role"] == "assistant"
    assert continuation[-2]["content"][0]["id"] == "toolu_1"
    (block,) = continuation[-1]["content"]
    assert block["type"] == "tool_result"
    assert block["tool_use_id"] == "toolu_1"
    assert json.loads(block["content"])["success"] is False

    (_, assistant) = await store.list_messages("c1")
    assert assistant.content == "I don't know yet."
    assert json.loads(assistant.tool_calls) == [
        {"id": "toolu_1", "name": "recall", "input": {"key": "favorite_color"}}
    ]
    (record,) = json.loads(assistant.tool_results)
    assert record["tool_use_id"] == "toolu_1"
    assert record["result"]["success"] is False


async def test_tool_side_effects_are_visible_to_later_rounds(store) -> None:
    remember = ToolCall(id="t1", name="remember", input={"key": "name", "value": "Ada"})
    recall = ToolCall(id="t2", name="recall", input={"key": "name"})
    backend = ScriptedBackend(
        _tool_round(remember, text="Saving. "),
        _tool_round(recall),
        _text_round("Your name is Ada."),
    )

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "My name is Ada")

    results = [e.result for e in events if e.type == "tool_result"]
    assert results[0] == {"success": True, "message": "Remembered: name"}
    assert results[1] == {"success": True, "key": "name", "value": "Ada"}
    assert events[-1] == OutputEvent.done()

    (_, assistant) = await store.list_messages("c1")
    assert assistant.content == "Saving. Your name is Ada."
    assert [c["id"] for c in json.loads(assistant.tool_calls)] == ["t1", "t2"]


async def test_round_emits_all_executing_before_any_result(store) -> None:
    calls = [
        ToolCall(id="a", name="slow", input={"n": 1}),
        ToolCall(id="b", name="fast", input={"n": 2}),
    ]
    backend = ScriptedBackend(_tool_round(*calls), _text_round("done"))

    async def _execute(name, arguments, conversation_id=None):
        # The first call finishes last; results must still keep call order.
        await asyncio.sleep(0.02 if name == "slow" else 0)
        return ToolResult(data={"tool": name})

    fake_registry = MagicMock()
    fake_registry.get_schemas.return_value = []
    fake_registry.execute = AsyncMock(side_effect=_execute)

    with (
        patch("src.chat.turn.stream_events", backend),
        patch("src.chat.turn.registry", fake_registry),
    ):
        events = await _collect("c1", "go")

    tool_events = [(e.type, e.name) for e in events if e.type.startswith("tool_")]
    assert tool_events == [
        ("tool_start", "slow"),
        ("tool_start", "fast"),
        ("tool_executing", "slow"),
        ("tool_executing", "fast"),
        ("tool_result", "slow"),
        ("tool_result", "fast"),
    ]
    blocks = backend.requests[1]["messages"][-1]["content"]
    assert [b["tool_use_id"] for b in blocks] == ["a", "b"]
    fake_registry.execute.assert_any_await("slow", {"n": 1}, conversation_id="c1")


async def test_tool_calls_recovered_from_final_content(store) -> None:
    content = [{"type": "tool_use", "id": "t9", "name": "recall", "input": {"key": "k"}}]
    backend = ScriptedBackend(
        [Terminal(stop_reason="tool_use", content=content)],
        _text_round("ok"),
    )

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "go")

    assert _types(events) == ["tool_executing", "tool_result", "text", "done"]
    assert backend.requests[1]["messages"][-1]["content"][0]["tool_use_id"] == "t9"


async def test_round_limit_ends_in_single_error(store) -> None:
    def _call(i: int) -> ToolCall:
        return ToolCall(id=f"t{i}", name="recall", input={"key": "x"})

    backend = ScriptedBackend(*(_tool_round(_call(i)) for i in range(3)))

    with patch("src.chat.turn.stream_events", backend):
        turn = ChatTurn("c1", "loop", max_tool_rounds=2)
        events = [e async for e in turn.events()]

    assert _types(events).count("error") == 1
    assert events[-1].type == "error"
    assert "2 tool round" in events[-1].message
    assert turn.state == TurnState.ERROR
    assert [m.role for m in await store.list_messages("c1")] == ["user"]


# -- Failures ------------------------------------------------------------------


async def test_mid_stream_failure_yields_single_error_and_keeps_user_message(store) -> None:
    backend = ScriptedBackend([TextDelta("Hel"), ConnectionError("upstream reset")])

    with patch("src.chat.turn.stream_events", backend):
        turn = ChatTurn("c1", "Hi")
        events = [e async for e in turn.events()]

    assert events == [OutputEvent.text("Hel"), OutputEvent.error("upstream reset")]
    assert turn.state == TurnState.ERROR

    messages = await store.list_messages("c1")
    assert [(m.role, m.content) for m in messages] == [("user", "Hi")]


async def test_stream_without_terminal_is_an_error(store) -> None:
    backend = ScriptedBackend([TextDelta("partial")])

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "Hi")

    assert _types(events) == ["text", "error"]
    assert "without a final message" in events[-1].message


async def test_exactly_one_terminal_event(store) -> None:
    backend = ScriptedBackend(_text_round("a"))

    with patch("src.chat.turn.stream_events", backend):
        events = await _collect("c1", "Hi")

    assert sum(e.is_terminal for e in events) == 1
    assert events[-1].is_terminal


async def test_persistence_failure_before_streaming_propagates() -> None:
    broken = AsyncMock()
    broken.ensure_conversation.side_effect = RuntimeError("disk full")

    with pytest.raises(RuntimeError, match="disk full"):
        await _collect("c1", "Hi", store=broken)


def test_empty_inputs_rejected(store) -> None:
    with pytest.raises(ValueError, match="Message is required"):
        ChatTurn("c1", "")
    with pytest.raises(ValueError, match="Conversation ID is required"):
        ChatTurn("", "hello")


async def test_run_turn_returns_event_iterator(store) -> None:
    backend = ScriptedBackend(_text_round("hey"))

    with patch("src.chat.turn.stream_events", backend):
        events = [e async for e in run_turn("c1", "hi")]

    assert _types(events) == ["text", "done"]


async def test_tool_only_turn_does_not_poison_next_request(store) -> None:
    call = ToolCall(id="t1", name="remember", input={"key": "name", "value": "Ada"})
    backend = ScriptedBackend(
        _tool_round(call),
        [Terminal(stop_reason="end_turn", content=[])],
        _text_round("Hi Ada."),
    )

    with patch("src.chat.turn.stream_events", backend):
        first = await _collect("c1", "I am Ada")
        second = await _collect("c1", "again")

    assert first[-1] == OutputEvent.done()
    assert second[-1] == OutputEvent.done()
    assert backend.requests[2]["messages"] == [
        {"role": "user", "content": "I am Ada"},
        {"role": "user", "content": "again"},
    ]
    # The tool-only assistant row is still recorded with its tool activity.
    (_, assistant, _, _) = await store.list_messages("c1")
    assert assistant.content == ""
    assert json.loads(assistant.tool_calls)[0]["id"] == "t1"


# -- Cancellation --------------------------------------------------------------


async def test_cancelled_consumer_lets_running_tools_finish(store) -> None:
    call = ToolCall(id="t1", name="remember", input={"key": "name", "value": "Ada"})
    backend = ScriptedBackend(_tool_round(call), _text_round("never reached"))
    started = asyncio.Event()
    release = asyncio.Event()

    async def _slow_execute(name, arguments, conversation_id=None):
        started.set()
        await release.wait()
        return await tool_registry.execute(name, arguments, conversation_id=conversation_id)

    fake_registry = MagicMock()
    fake_registry.get_schemas.return_value = tool_registry.get_schemas()
    fake_registry.execute = AsyncMock(side_effect=_slow_execute)
    received: list[OutputEvent] = []

    async def _consume() -> None:
        async for event in ChatTurn("c1", "I am Ada").events():
            received.append(event)

    with (
        patch("src.chat.turn.stream_events", backend),
        patch("src.chat.turn.registry", fake_registry),
    ):
        task = asyncio.create_task(_consume())
        await asyncio.wait_for(started.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        for _ in range(100):
            if await store.get_memory("c1", "name") is not None:
                break
            await asyncio.sleep(0.01)

    assert await store.get_memory("c1", "name") == "Ada"
    assert _types(received) == ["tool_start", "tool_executing"]
    assert len(backend.requests) == 1
    assert [m.role for m in await store.list_messages("c1")] == ["user"]
