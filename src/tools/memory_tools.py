"""Explicit memory tools.

Memories are per-conversation key/value facts. Everything remembered is
also rendered into the system prompt of every later turn.
"""

from pydantic import Field

from src.store.chat_store import ChatStore
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry

# -- remember ----------------------------------------------------------------


class RememberParams(ToolParams):
    key: str = Field(
        description=(
            "A short identifier for what you are remembering "
            '(e.g., "user_name", "favorite_color", "work_project")'
        ),
    )
    value: str = Field(description="The information to remember")


@registry.tool(
    name="remember",
    description=(
        "Store an important piece of information about the user or conversation "
        "to remember for later. Use this when the user shares personal details, "
        "preferences, or important facts."
    ),
    params_model=RememberParams,
)
async def remember(key: str, value: str, conversation_id: str) -> ToolResult:
    await ChatStore.get().upsert_memory(conversation_id, key, value)
    return ToolResult(data={"message": f"Remembered: {key}"})


# -- recall ------------------------------------------------------------------


class RecallParams(ToolParams):
    key: str = Field(description="The identifier of the information to recall")


@registry.tool(
    name="recall",
    description="Retrieve a previously remembered piece of information.",
    params_model=RecallParams,
)
async def recall(key: str, conversation_id: str) -> ToolResult:
    value = await ChatStore.get().get_memory(conversation_id, key)
    if value is None:
        return ToolResult(error=f"No memory found for key: {key}")
    return ToolResult(data={"key": key, "value": value})
