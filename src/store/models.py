"""Conversation data model: rows persisted by ChatStore."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

DEFAULT_TITLE = "New Conversation"


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Conversation:
    """A chat thread. Owns its messages, memories and uploaded files."""

    id: str
    title: str = DEFAULT_TITLE
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(id=row[0], title=row[1], created_at=row[2], updated_at=row[3])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Message:
    """A single conversation turn.

    Attributes:
        id: UUID string.
        conversation_id: Owning conversation.
        role: ``"user"`` or ``"assistant"``.
        content: Plain text of the turn.
        tool_calls: JSON text of the tool calls made while producing this
            message, if any.
        tool_results: JSON text of the matching tool results, if any.
        created_at: ISO 8601 timestamp.
    """

    id: str
    conversation_id: str
    role: str
    content: str
    tool_calls: str | None = None
    tool_results: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            role=row[2],
            content=row[3],
            tool_calls=row[4],
            tool_results=row[5],
            created_at=row[6],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Memory:
    """A per-conversation key/value fact injected into the system prompt."""

    id: str
    conversation_id: str
    key: str
    value: str
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()

    @classmethod
    def from_row(cls, row: tuple) -> Memory:
        return cls(
            id=row[0],
            conversation_id=row[1],
            key=row[2],
            value=row[3],
            created_at=row[4],
        )


@dataclass
class UploadedFile:
    """An uploaded document with its already-extracted text."""

    id: str
    conversation_id: str
    filename: str
    mimetype: str
    content: str
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()

    @classmethod
    def from_row(cls, row: tuple) -> UploadedFile:
        return cls(
            id=row[0],
            conversation_id=row[1],
            filename=row[2],
            mimetype=row[3],
            content=row[4],
            created_at=row[5],
        )
