"""Conversation title generation."""

from __future__ import annotations

import logging

from src.llm.client import complete_text
from src.store.chat_store import ChatStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 50

_TITLE_PROMPT = (
    "Write a short title (at most six words) for a conversation that starts "
    "with the message below. Reply with the title only, no quotes.\n\n"
    "Message:\n{message}"
)


def _truncate(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


async def generate_title(
    conversation_id: str, store: ChatStore | None = None
) -> str | None:
    """Generate and persist a title from the first user message.

    Returns the new title, or None when the conversation has no user
    message yet. Falls back to the truncated first message when the model
    is unavailable or answers with nothing.
    """
    store = store or ChatStore.get()
    messages = await store.list_messages(conversation_id)
    first = next((m for m in messages if m.role == "user"), None)
    if first is None:
        logger.debug("Conversation %s has no user message; skipping title", conversation_id)
        return None

    fallback = _truncate(first.content)
    try:
        title = await complete_text(
            [{"role": "user", "content": _TITLE_PROMPT.format(message=first.content)}],
            max_tokens=30,
        )
    except Exception:
        logger.exception("Title generation failed for %s", conversation_id)
        title = ""

    title = _truncate(title.strip().strip('"').strip()) or fallback
    await store.rename_conversation(conversation_id, title)
    return title
