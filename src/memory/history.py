"""Conversation history loading and projection for the Claude API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from src.store.chat_store import ChatStore
from src.store.models import Memory, Message

logger = logging.getLogger(__name__)


@dataclass
class ConversationHistory:
    """Everything the model needs to know about a conversation so far."""

    messages: list[Message] = field(default_factory=list)
    memories: list[Memory] = field(default_factory=list)


async def load_history(
    conversation_id: str, store: ChatStore | None = None
) -> ConversationHistory:
    """Load ordered messages and all memories for a conversation.

    Store errors propagate. A conversation with no rows yet yields an
    empty history.
    """
    store = store or ChatStore.get()
    messages, memories = await asyncio.gather(
        store.list_messages(conversation_id),
        store.list_memories(conversation_id),
    )
    logger.debug(
        "Loaded %d message(s), %d memory(ies) for %s",
        len(messages),
        len(memories),
        conversation_id,
    )
    return ConversationHistory(messages=messages, memories=memories)


def to_api_messages(history: ConversationHistory) -> list[dict[str, str]]:
    """Format messages for the Claude API, dropping tool-call metadata.

    Messages with empty content (a turn that only ran tools) are skipped;
    the API rejects empty non-final messages.
    """
    return [
        {"role": m.role, "content": m.content}
        for m in history.messages
        if m.content.strip()
    ]
