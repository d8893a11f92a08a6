"""Tool registry: central catalog and dispatch for all tools."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.config import settings
from src.tools.base import ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class ToolDef:
    """Internal representation of a registered tool."""

    name: str
    description: str
    handler: Callable[..., Awaitable[ToolResult]]
    params_model: type[ToolParams] | None = None


class ToolRegistry:
    """Central registry for all tools.

    Tools register with the decorator::

        @registry.tool(
            name="my_tool",
            description="Does a thing",
            params_model=MyToolParams,
        )
        async def my_tool(value: str, conversation_id: str) -> ToolResult:
            return ToolResult(data={"ok": True})

    A handler that declares a ``conversation_id`` parameter receives the id
    of the conversation the call was made in.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable:
        """Decorator to register an async function as a tool."""

        def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            if name in self._tools:
                msg = f"Tool '{name}' is already registered"
                raise ValueError(msg)

            self._tools[name] = ToolDef(
                name=name,
                description=description,
                handler=fn,
                params_model=params_model,
            )
            return fn

        return decorator

    def get(self, name: str) -> ToolDef | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        """All registered tool names."""
        return list(self._tools.keys())

    def get_schemas(self) -> list[dict[str, Any]]:
        """Generate Claude-compatible tool schemas for all registered tools."""
        return [self._tool_schema(t) for t in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        conversation_id: str | None = None,
    ) -> ToolResult:
        """Execute a tool by name with the given arguments.

        Arguments are validated against the tool's params_model before the
        handler runs. Never raises: unknown tools, invalid arguments,
        timeouts and handler exceptions all come back as a failed
        ``ToolResult``.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            return ToolResult(error=f"Unknown tool: {name}")

        logger.info("Tool '%s' called with %s", name, arguments)
        t0 = time.monotonic()

        try:
            kwargs = self._validate(tool_def, arguments)
        except ValidationError as exc:
            logger.warning("Tool '%s' rejected arguments: %s", name, exc)
            return ToolResult(error=f"Invalid arguments for '{name}': {_describe(exc)}")

        if _accepts_param(tool_def.handler, "conversation_id"):
            kwargs["conversation_id"] = conversation_id

        try:
            result = await asyncio.wait_for(
                tool_def.handler(**kwargs), timeout=settings.tool_timeout_seconds
            )
        except TimeoutError:
            elapsed = time.monotonic() - t0
            logger.warning("Tool '%s' timed out after %.2fs", name, elapsed)
            return ToolResult(error=f"Tool '{name}' timed out.")
        except Exception:
            elapsed = time.monotonic() - t0
            logger.exception("Tool '%s' failed in %.2fs", name, elapsed)
            return ToolResult(error=f"Tool '{name}' failed. Check logs for details.")

        elapsed = time.monotonic() - t0
        if result.success:
            logger.info("Tool '%s' succeeded in %.2fs", name, elapsed)
        else:
            logger.warning("Tool '%s' returned error in %.2fs: %s", name, elapsed, result.error)
        return result

    @staticmethod
    def _validate(tool_def: ToolDef, arguments: dict[str, Any]) -> dict[str, Any]:
        if tool_def.params_model is None:
            return dict(arguments)
        return tool_def.params_model.model_validate(arguments).model_dump()

    @staticmethod
    def _tool_schema(tool_def: ToolDef) -> dict[str, Any]:
        """Build a single Claude tool schema dict."""
        if tool_def.params_model is not None:
            input_schema = tool_def.params_model.model_json_schema()
        else:
            input_schema = {"type": "object", "properties": {}}

        return {
            "name": tool_def.name,
            "description": tool_def.description,
            "input_schema": input_schema,
        }


def _accepts_param(fn: Callable[..., Any], param_name: str) -> bool:
    """Check whether a callable accepts a given parameter name."""
    return param_name in inspect.signature(fn).parameters


def _describe(exc: ValidationError) -> str:
    """One-line summary of pydantic validation errors."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "arguments"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


# Global registry; import this from anywhere to register or look up tools.
registry = ToolRegistry()
