"""Output events of a chat turn and their wire encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

TEXT = "text"
TOOL_START = "tool_start"
TOOL_EXECUTING = "tool_executing"
TOOL_RESULT = "tool_result"
DONE = "done"
ERROR = "error"


@dataclass(frozen=True)
class OutputEvent:
    """One event of a turn's output sequence.

    Only the fields relevant to ``type`` are set: ``content`` for text,
    ``name`` for tool events, ``input`` for tool_executing, ``result`` for
    tool_result and ``message`` for error.
    """

    type: str
    content: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    message: str | None = None
    call_id: str | None = field(default=None, compare=False)

    @classmethod
    def text(cls, content: str) -> OutputEvent:
        return cls(type=TEXT, content=content)

    @classmethod
    def tool_start(cls, name: str, call_id: str | None = None) -> OutputEvent:
        return cls(type=TOOL_START, name=name, call_id=call_id)

    @classmethod
    def tool_executing(
        cls, name: str, tool_input: dict[str, Any], call_id: str | None = None
    ) -> OutputEvent:
        return cls(type=TOOL_EXECUTING, name=name, input=tool_input, call_id=call_id)

    @classmethod
    def tool_result(
        cls, name: str, result: dict[str, Any], call_id: str | None = None
    ) -> OutputEvent:
        return cls(type=TOOL_RESULT, name=name, result=result, call_id=call_id)

    @classmethod
    def done(cls) -> OutputEvent:
        return cls(type=DONE)

    @classmethod
    def error(cls, message: str) -> OutputEvent:
        return cls(type=ERROR, message=message)

    @property
    def is_terminal(self) -> bool:
        return self.type in (DONE, ERROR)

    def to_payload(self) -> dict[str, Any]:
        """JSON object sent to clients for this event."""
        if self.type == TEXT:
            return {"type": TEXT, "content": self.content}
        if self.type == TOOL_START:
            return {"type": TOOL_START, "name": self.name}
        if self.type == TOOL_EXECUTING:
            return {"type": TOOL_EXECUTING, "name": self.name, "input": self.input}
        if self.type == TOOL_RESULT:
            return {"type": TOOL_RESULT, "name": self.name, "result": self.result}
        if self.type == ERROR:
            return {"type": ERROR, "error": self.message}
        return {"type": self.type}

    def to_sse(self) -> bytes:
        """Encode as one ``data: <json>\\n\\n`` frame."""
        return f"data: {json.dumps(self.to_payload(), default=str)}\n\n".encode()
