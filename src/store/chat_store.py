"""ChatStore: aiosqlite persistence for conversations and their dependents."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite

from src.config import settings
from src.store.models import (
    DEFAULT_TITLE,
    Conversation,
    Memory,
    Message,
    UploadedFile,
    new_id,
    utc_now,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

USER_DATA_TABLE = "user_data"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS conversations (
    id         TEXT PRIMARY KEY,
    title      TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    role            TEXT NOT NULL,
    content         TEXT NOT NULL,
    tool_calls      TEXT,
    tool_results    TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS memories (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    key             TEXT NOT NULL,
    value           TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    UNIQUE (conversation_id, key)
);

CREATE TABLE IF NOT EXISTS files (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    filename        TEXT NOT NULL,
    mimetype        TEXT NOT NULL,
    content         TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS {USER_DATA_TABLE} (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    key             TEXT NOT NULL,
    value           TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    UNIQUE (conversation_id, key)
);
"""

# Dependents are removed before the conversation row.
_CASCADE_TABLES = ("messages", "memories", "files", USER_DATA_TABLE)


class ChatStore:
    """Persists conversations, messages, memories and files in SQLite.

    Singleton accessed via ``ChatStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Every operation opens its own connection and closes it before
    returning, so no connection is held across a model round-trip.
    Writes are serialised through an ``asyncio.Lock`` and committed as a
    single transaction.
    """

    _instance: ChatStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False
        self._write_lock = asyncio.Lock()

    @classmethod
    def get(cls) -> ChatStore:
        """Return the shared ChatStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA busy_timeout=5000")
        if not self._initialised:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.executescript(_SCHEMA)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[aiosqlite.Connection]:
        db = await self._connect()
        try:
            yield db
        finally:
            await db.close()

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock for one transaction; roll back on error."""
        async with self._write_lock:
            db = await self._connect()
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
            finally:
                await db.close()

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(
        self, conversation_id: str | None = None, title: str | None = None
    ) -> Conversation:
        """Insert a new conversation. Generates an id when none is given."""
        conv = Conversation(id=conversation_id or new_id(), title=title or DEFAULT_TITLE)
        async with self._writing() as db:
            await db.execute(
                "INSERT INTO conversations (id, title, created_at, updated_at)"
                " VALUES (?, ?, ?, ?)",
                (conv.id, conv.title, conv.created_at, conv.updated_at),
            )
        logger.info("Created conversation %s", conv.id)
        return conv

    async def ensure_conversation(
        self, conversation_id: str, title: str = DEFAULT_TITLE
    ) -> bool:
        """Create the conversation if absent. Returns True if it was created."""
        now = utc_now()
        async with self._writing() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO conversations (id, title, created_at, updated_at)"
                " VALUES (?, ?, ?, ?)",
                (conversation_id, title, now, now),
            )
            created = cursor.rowcount > 0
        if created:
            logger.info("Created conversation %s", conversation_id)
        return created

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
        return Conversation.from_row(row) if row else None

    async def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT id, title, created_at, updated_at FROM conversations"
                " ORDER BY updated_at DESC"
            )
            rows = await cursor.fetchall()
        return [Conversation.from_row(row) for row in rows]

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        """Set a new title. Returns True if the conversation exists."""
        async with self._writing() as db:
            cursor = await db.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (title, utc_now(), conversation_id),
            )
            return cursor.rowcount > 0

    async def delete_conversation_cascade(self, conversation_id: str) -> bool:
        """Delete a conversation and everything it owns in one transaction.

        Returns True if the conversation row existed.
        """
        async with self._writing() as db:
            for table in _CASCADE_TABLES:
                await db.execute(
                    f"DELETE FROM {table} WHERE conversation_id = ?",  # noqa: S608
                    (conversation_id,),
                )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            deleted = cursor.rowcount > 0
        logger.info("Deleted conversation %s (existed=%s)", conversation_id, deleted)
        return deleted

    # -- Messages --------------------------------------------------------------

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_calls: str | None = None,
        tool_results: str | None = None,
    ) -> Message:
        """Append a message and bump the conversation's updated_at."""
        msg = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_results=tool_results,
        )
        async with self._writing() as db:
            await db.execute(
                """
                INSERT INTO messages
                    (id, conversation_id, role, content, tool_calls, tool_results, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg.id,
                    msg.conversation_id,
                    msg.role,
                    msg.content,
                    msg.tool_calls,
                    msg.tool_results,
                    msg.created_at,
                ),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (msg.created_at, conversation_id),
            )
        return msg

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Messages in replay order (creation time, then insertion order)."""
        async with self._reading() as db:
            cursor = await db.execute(
                """
                SELECT id, conversation_id, role, content, tool_calls, tool_results, created_at
                FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        return [Message.from_row(row) for row in rows]

    # -- Memories --------------------------------------------------------------

    async def upsert_memory(self, conversation_id: str, key: str, value: str) -> Memory:
        """Insert or replace the value stored under (conversation, key)."""
        async with self._writing() as db:
            await db.execute(
                """
                INSERT INTO memories (id, conversation_id, key, value, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (conversation_id, key) DO UPDATE SET value = excluded.value
                """,
                (new_id(), conversation_id, key, value, utc_now()),
            )
            cursor = await db.execute(
                "SELECT id, conversation_id, key, value, created_at FROM memories"
                " WHERE conversation_id = ? AND key = ?",
                (conversation_id, key),
            )
            row = await cursor.fetchone()
        return Memory.from_row(row)

    async def get_memory(self, conversation_id: str, key: str) -> str | None:
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT value FROM memories WHERE conversation_id = ? AND key = ?",
                (conversation_id, key),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def list_memories(self, conversation_id: str) -> list[Memory]:
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT id, conversation_id, key, value, created_at FROM memories"
                " WHERE conversation_id = ? ORDER BY created_at ASC",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        return [Memory.from_row(row) for row in rows]

    # -- Files -----------------------------------------------------------------

    async def add_file(
        self, conversation_id: str, filename: str, mimetype: str, content: str
    ) -> UploadedFile:
        record = UploadedFile(
            id=new_id(),
            conversation_id=conversation_id,
            filename=filename,
            mimetype=mimetype,
            content=content,
        )
        async with self._writing() as db:
            await db.execute(
                "INSERT INTO files (id, conversation_id, filename, mimetype, content, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.conversation_id,
                    record.filename,
                    record.mimetype,
                    record.content,
                    record.created_at,
                ),
            )
        logger.info("Stored file %s (%s) for %s", record.filename, record.id, conversation_id)
        return record

    async def get_file(self, file_id: str, conversation_id: str) -> UploadedFile | None:
        """Fetch a file, only if it belongs to *conversation_id*."""
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT id, conversation_id, filename, mimetype, content, created_at"
                " FROM files WHERE id = ? AND conversation_id = ?",
                (file_id, conversation_id),
            )
            row = await cursor.fetchone()
        return UploadedFile.from_row(row) if row else None

    # -- User data (sandboxed key/value table) ---------------------------------

    async def store_user_data(self, conversation_id: str, key: str, value: str) -> None:
        async with self._writing() as db:
            await db.execute(
                f"""
                INSERT INTO {USER_DATA_TABLE} (id, conversation_id, key, value, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (conversation_id, key) DO UPDATE SET value = excluded.value
                """,  # noqa: S608
                (new_id(), conversation_id, key, value, utc_now()),
            )

    async def get_user_data(
        self, conversation_id: str, key: str | None = None
    ) -> list[dict[str, str]]:
        """Rows for one key, or every row of the conversation when key is None."""
        sql = f"SELECT key, value FROM {USER_DATA_TABLE} WHERE conversation_id = ?"  # noqa: S608
        params: tuple = (conversation_id,)
        if key is not None:
            sql += " AND key = ?"
            params = (conversation_id, key)
        async with self._reading() as db:
            cursor = await db.execute(sql + " ORDER BY created_at ASC", params)
            rows = await cursor.fetchall()
        return [{"key": row[0], "value": row[1]} for row in rows]

    async def execute_user_query(
        self, query: str, params: list[Any] | None = None, *, read_only: bool
    ) -> dict[str, Any]:
        """Run a query that the caller has already vetted.

        Read queries return ``{"rows": [...]}`` with one dict per row;
        write queries return ``{"rows_affected": n}``.
        """
        if read_only:
            async with self._reading() as db:
                cursor = await db.execute(query, tuple(params or ()))
                rows = await cursor.fetchall()
                columns = [d[0] for d in cursor.description or ()]
            return {"rows": [dict(zip(columns, row, strict=False)) for row in rows]}

        async with self._writing() as db:
            cursor = await db.execute(query, tuple(params or ()))
            affected = max(cursor.rowcount, 0)
        return {"rows_affected": affected}
