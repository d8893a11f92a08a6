"""Async Claude API client: streaming events and single-shot calls."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import anthropic

from src.config import settings
from src.llm.events import Terminal, TextDelta, ToolCall, ToolStart, ToolStop

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.llm.events import BackendEvent

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.model_timeout_seconds,
            max_retries=0,
        )
    return _client


def _serialize_content(content: list[Any]) -> list[dict[str, Any]]:
    """Convert SDK content blocks to plain dicts for message history."""
    result: list[dict[str, Any]] = []
    for block in content:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
    return result


def _request_kwargs(
    messages: list[dict[str, Any]],
    system: str | None,
    tools: list[dict[str, Any]] | None,
    model: str | None,
    max_tokens: int | None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model or settings.claude_model,
        "max_tokens": max_tokens or settings.max_output_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    if tools:
        kwargs["tools"] = tools
    return kwargs


async def stream_events(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    tools: list[dict[str, Any]] | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> AsyncIterator[BackendEvent]:
    """Stream one model call as ``BackendEvent`` values.

    Text deltas are yielded as they arrive. A ``ToolStart`` is yielded when
    a tool_use block opens and a ``ToolStop`` carrying the complete call
    (with its fully parsed input) when it closes. The final event is
    always a ``Terminal`` with the stop reason and full content blocks.

    SDK errors propagate to the caller.
    """
    client = _get_client()
    kwargs = _request_kwargs(messages, system, tools, model, max_tokens)

    open_tools: dict[int, ToolStart] = {}
    async with client.messages.stream(**kwargs) as stream:
        async for event in stream:
            if event.type == "content_block_start":
                block = event.content_block
                if block.type == "tool_use":
                    start = ToolStart(id=block.id, name=block.name)
                    open_tools[event.index] = start
                    yield start
            elif event.type == "content_block_delta":
                if event.delta.type == "text_delta":
                    yield TextDelta(event.delta.text)
            elif event.type == "content_block_stop":
                start = open_tools.pop(event.index, None)
                if start is None:
                    continue
                block = getattr(event, "content_block", None)
                tool_input = getattr(block, "input", None) or {}
                yield ToolStop(ToolCall(id=start.id, name=start.name, input=dict(tool_input)))

        final = await stream.get_final_message()

    logger.debug("Model stream finished: stop_reason=%s", final.stop_reason)
    yield Terminal(stop_reason=final.stop_reason, content=_serialize_content(final.content))


async def complete(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    tools: list[dict[str, Any]] | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> Terminal:
    """Single-shot, non-streaming Claude call returning the final blocks."""
    client = _get_client()
    response = await client.messages.create(
        **_request_kwargs(messages, system, tools, model, max_tokens)
    )
    return Terminal(
        stop_reason=response.stop_reason,
        content=_serialize_content(response.content),
    )


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 4096,
) -> str:
    """Single-shot Claude call without tools, memory or streaming.

    Use this for isolated LLM tasks (titles, summaries, etc.) where the
    full chat turn is not needed.
    """
    result = await complete(messages, system=system, model=model, max_tokens=max_tokens)
    return "".join(b["text"] for b in result.content if b["type"] == "text")
