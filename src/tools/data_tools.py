"""Key/value data tools backed by the sandboxed ``user_data`` table."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import aiosqlite
from pydantic import Field

from src.store.chat_store import USER_DATA_TABLE, ChatStore
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry

logger = logging.getLogger(__name__)

_CREATE_TABLE = re.compile(r"^create\s+table\s+(?:if\s+not\s+exists\s+)?(\w+)", re.IGNORECASE)
_WRITE_VERBS = ("insert", "update", "delete")


def check_query(query: str) -> tuple[bool, str | None]:
    """Classify a free-form query against the user_data allow-list.

    Returns ``(read_only, error)``. ``error`` is set when the query must
    not run. The check is textual, not a SQL parser.
    """
    lowered = query.strip().lower()

    if lowered.startswith("create table"):
        match = _CREATE_TABLE.match(query.strip())
        if match and match.group(1).lower() == USER_DATA_TABLE:
            return False, None
        return False, f"Only the {USER_DATA_TABLE} table can be created"

    if lowered.startswith("select"):
        return True, None

    if lowered.startswith(_WRITE_VERBS):
        if USER_DATA_TABLE not in lowered:
            return False, f"Operation only allowed on {USER_DATA_TABLE} table"
        return False, None

    return False, "Query type not supported"


# -- store_data --------------------------------------------------------------


class StoreDataParams(ToolParams):
    key: str = Field(description="The key to store the data under")
    value: Any = Field(description="The value to store (can be JSON for complex data)")


@registry.tool(
    name="store_data",
    description=(
        "Store a key-value pair in the database for later retrieval. Use this "
        "to remember information across conversations."
    ),
    params_model=StoreDataParams,
)
async def store_data(key: str, value: Any, conversation_id: str) -> ToolResult:
    text = value if isinstance(value, str) else json.dumps(value)
    await ChatStore.get().store_user_data(conversation_id, key, text)
    return ToolResult(data={"rows_affected": 1})


# -- retrieve_data -----------------------------------------------------------


class RetrieveDataParams(ToolParams):
    key: str | None = Field(
        default=None,
        description="The key to retrieve data for (optional, omit to get all data)",
    )


@registry.tool(
    name="retrieve_data",
    description=(
        "Retrieve stored data from the database by key. If no key provided, "
        "returns all stored data."
    ),
    params_model=RetrieveDataParams,
)
async def retrieve_data(conversation_id: str, key: str | None = None) -> ToolResult:
    rows = await ChatStore.get().get_user_data(conversation_id, key)
    return ToolResult(data={"data": rows})


# -- query_data --------------------------------------------------------------


class QueryDataParams(ToolParams):
    query: str = Field(
        description=(
            f"SQL to run. SELECT queries are allowed; INSERT, UPDATE and DELETE "
            f"only on the {USER_DATA_TABLE} table."
        ),
    )
    params: list[Any] | None = Field(
        default=None,
        description="Optional positional parameters for ? placeholders",
    )


@registry.tool(
    name="query_data",
    description=(
        f"Run a SQL query against the {USER_DATA_TABLE} table "
        "(columns: id, conversation_id, key, value, created_at). Prefer "
        "store_data and retrieve_data for simple key-value access."
    ),
    params_model=QueryDataParams,
)
async def query_data(query: str, params: list[Any] | None = None) -> ToolResult:
    read_only, error = check_query(query)
    if error:
        logger.warning("Rejected query: %s", query)
        return ToolResult(error=error)

    try:
        result = await ChatStore.get().execute_user_query(query, params, read_only=read_only)
    except aiosqlite.Error as exc:
        return ToolResult(error=f"Query failed: {exc}")
    return ToolResult(data=result)
