"""Events produced by a streaming model call.

A streaming call is consumed as one async iterator of ``BackendEvent``:
any number of ``TextDelta`` / ``ToolStart`` / ``ToolStop`` events followed
by exactly one ``Terminal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCall:
    """A complete tool_use block requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolStop:
    call: ToolCall


@dataclass(frozen=True)
class Terminal:
    """End of the stream.

    ``content`` holds the full assistant content blocks as plain dicts,
    ready to be replayed as the assistant turn of a continuation request.
    """

    stop_reason: str | None
    content: list[dict[str, Any]] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use"


BackendEvent = TextDelta | ToolStart | ToolStop | Terminal
