"""Chat turn orchestration: streaming, tool calls and continuation.

One turn takes a user message to one persisted assistant message::

    IDLE -> AWAITING_MODEL -> STREAMING_TEXT
         -> (TOOL_REQUESTED -> EXECUTING_TOOLS -> AWAITING_CONTINUATION -> STREAMING_TEXT)*
         -> DONE

Any backend failure moves the turn to ERROR, emits a single ``error``
event and ends the sequence without persisting an assistant message.
The user message, written before the model is contacted, is kept.

Tool calls of one round run concurrently. Their events are emitted in
the order the model requested them: every ``tool_executing`` first, then
every ``tool_result`` once the whole round has finished.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from src.chat.errors import IncompleteStreamError, ToolRoundLimitError
from src.chat.events import OutputEvent
from src.config import settings
from src.llm.client import stream_events
from src.llm.events import Terminal, TextDelta, ToolCall, ToolStart, ToolStop
from src.llm.prompt import build_system_prompt
from src.memory.history import load_history, to_api_messages
from src.store.chat_store import ChatStore
from src.tools import registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.tools.base import ToolResult

logger = logging.getLogger(__name__)


class TurnState(StrEnum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    STREAMING_TEXT = "streaming_text"
    TOOL_REQUESTED = "tool_requested"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_CONTINUATION = "awaiting_continuation"
    DONE = "done"
    ERROR = "error"


def _calls_from_content(content: list[dict[str, Any]]) -> list[ToolCall]:
    """Recover tool calls from final content blocks."""
    return [
        ToolCall(id=b["id"], name=b["name"], input=dict(b.get("input") or {}))
        for b in content
        if b.get("type") == "tool_use"
    ]


class ChatTurn:
    """Drives one user message through the model and its tool calls.

    Iterate ``events()`` to run the turn. The instance is single-use.
    """

    def __init__(
        self,
        conversation_id: str,
        user_text: str,
        *,
        store: ChatStore | None = None,
        max_tool_rounds: int | None = None,
    ) -> None:
        if not conversation_id:
            msg = "Conversation ID is required"
            raise ValueError(msg)
        if not user_text:
            msg = "Message is required"
            raise ValueError(msg)
        self.conversation_id = conversation_id
        self.user_text = user_text
        self.state = TurnState.IDLE
        self._store = store or ChatStore.get()
        self._max_rounds = (
            settings.max_tool_rounds if max_tool_rounds is None else max_tool_rounds
        )
        self._text_parts: list[str] = []
        self._tool_calls: list[dict[str, Any]] = []
        self._tool_results: list[dict[str, Any]] = []

    def _set_state(self, state: TurnState) -> None:
        logger.debug("Turn %s: %s -> %s", self.conversation_id, self.state, state)
        self.state = state

    async def events(self) -> AsyncIterator[OutputEvent]:
        """Run the turn, yielding output events as they are produced.

        Persistence errors before the model is contacted propagate to the
        caller; everything after that ends in ``done`` or ``error``.
        """
        await self._store.ensure_conversation(self.conversation_id)
        await self._store.append_message(self.conversation_id, "user", self.user_text)

        history = await load_history(self.conversation_id, self._store)
        system = build_system_prompt(history.memories)
        messages: list[dict[str, Any]] = list(to_api_messages(history))
        tools = registry.get_schemas()

        try:
            for round_num in range(self._max_rounds + 1):
                self._set_state(
                    TurnState.AWAITING_MODEL if round_num == 0
                    else TurnState.AWAITING_CONTINUATION
                )
                queued: list[ToolCall] = []
                terminal: Terminal | None = None

                async for event in stream_events(messages, system=system, tools=tools):
                    if isinstance(event, TextDelta):
                        if self.state != TurnState.STREAMING_TEXT:
                            self._set_state(TurnState.STREAMING_TEXT)
                        self._text_parts.append(event.text)
                        yield OutputEvent.text(event.text)
                    elif isinstance(event, ToolStart):
                        yield OutputEvent.tool_start(event.name, call_id=event.id)
                    elif isinstance(event, ToolStop):
                        queued.append(event.call)
                    elif isinstance(event, Terminal):
                        terminal = event

                if terminal is None:
                    msg = "Model stream ended without a final message"
                    raise IncompleteStreamError(msg)

                if not terminal.wants_tools:
                    break
                if not queued:
                    queued = _calls_from_content(terminal.content)
                    if not queued:
                        break
                if round_num == self._max_rounds:
                    raise ToolRoundLimitError(self._max_rounds)

                self._set_state(TurnState.TOOL_REQUESTED)
                logger.info(
                    "Round %d: %d tool call(s): %s",
                    round_num + 1,
                    len(queued),
                    ", ".join(c.name for c in queued),
                )
                for call in queued:
                    yield OutputEvent.tool_executing(call.name, call.input, call_id=call.id)

                self._set_state(TurnState.EXECUTING_TOOLS)
                results = await self._execute_round(queued)

                tool_blocks: list[dict[str, Any]] = []
                for call, result in zip(queued, results, strict=True):
                    yield OutputEvent.tool_result(call.name, result.to_dict(), call_id=call.id)
                    tool_blocks.append({
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": result.to_content(),
                    })
                    self._tool_calls.append(
                        {"id": call.id, "name": call.name, "input": call.input}
                    )
                    self._tool_results.append(
                        {"tool_use_id": call.id, "result": result.to_dict()}
                    )

                messages = [
                    *messages,
                    {"role": "assistant", "content": terminal.content},
                    {"role": "user", "content": tool_blocks},
                ]
        except Exception as exc:
            self._set_state(TurnState.ERROR)
            logger.exception("Turn failed for conversation %s", self.conversation_id)
            yield OutputEvent.error(str(exc) or exc.__class__.__name__)
            return

        await self._store.append_message(
            self.conversation_id,
            "assistant",
            "".join(self._text_parts),
            tool_calls=json.dumps(self._tool_calls) if self._tool_calls else None,
            tool_results=(
                json.dumps(self._tool_results, default=str) if self._tool_results else None
            ),
        )
        self._set_state(TurnState.DONE)
        yield OutputEvent.done()

    async def _execute_round(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run one round's tool calls concurrently; results keep call order.

        Shielded so a client disconnect does not cancel tools mid-write.
        """
        pending = asyncio.gather(*(
            registry.execute(call.name, call.input, conversation_id=self.conversation_id)
            for call in calls
        ))
        return list(await asyncio.shield(pending))


def run_turn(
    conversation_id: str, user_text: str, *, store: ChatStore | None = None
) -> AsyncIterator[OutputEvent]:
    """Start a chat turn and return its output event sequence."""
    return ChatTurn(conversation_id, user_text, store=store).events()
