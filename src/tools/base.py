"""Base types for the tool-calling framework."""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolResult:
    """Result of a tool execution.

    Every tool returns one of these. The chat loop serializes it into a
    tool_result content block for Claude and into the ``tool_result``
    event sent to the client.

    A result may carry both ``data`` and ``error`` (e.g. an API call that
    answered with a non-2xx status); it is a failure whenever ``error``
    is set.
    """

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.data or {})
        return payload

    def to_content(self) -> str:
        """Serialize for the Claude tool_result content field."""
        return json.dumps(self.to_dict(), default=str)


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    Subclass with Field() definitions. The JSON schema is auto-generated
    via model_json_schema() for Claude's tool definitions, and incoming
    arguments are validated against it before the handler runs.
    """
