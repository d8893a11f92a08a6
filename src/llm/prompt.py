"""System prompt assembly with per-conversation memories."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.store.models import Memory

SYSTEM_PROMPT = """You are Taurus, a helpful, friendly, and capable AI assistant. \
You have access to various tools that allow you to:

1. **Browse the web** - Fetch and read content from websites
2. **Process files** - Read uploaded documents (PDFs, Word docs, text files, code)
3. **Store and retrieve data** - Save information to a database for later use
4. **Make API calls** - Interact with external APIs
5. **Remember things** - Store important information about the user for future conversations

Be conversational and helpful. When you use tools, briefly explain what you're doing. \
If a tool fails, try to help the user anyway or suggest alternatives.

Remember to use the 'remember' tool when the user shares important personal information, \
preferences, or facts they want you to recall later."""


def format_memories(memories: Iterable[Memory]) -> str:
    """Render memories as the prompt's memory section (one line each)."""
    lines = [f"- {m.key}: {m.value}" for m in memories]
    if not lines:
        return ""
    return (
        "## User Memories\n"
        "The following are things you've learned about the user or important "
        "facts to remember:\n" + "\n".join(lines)
    )


def build_system_prompt(memories: Iterable[Memory], base: str = SYSTEM_PROMPT) -> str:
    """Return *base*, followed by the memory section when there are memories."""
    memory_text = format_memories(memories)
    if not memory_text:
        return base
    return f"{base}\n\n{memory_text}"
