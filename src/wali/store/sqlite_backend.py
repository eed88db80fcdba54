"""SQLite backend for documents, chunks, conversations and settings."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from wali.core.message import Conversation, Message, Role, SourceRef
from wali.exceptions import NotFoundError, StorageError
from wali.rag.document import Chunk, Document, DocumentSummary, new_id

from .base import ConversationStore, DocumentStore, SettingsStore

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    content TEXT NOT NULL,
    file_type TEXT,
    file_size INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    start_index INTEGER NOT NULL,
    end_index INTEGER NOT NULL,
    embedding TEXT,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, chunk_index);
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    sources TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteDatabase:
    """SQLite file shared by the stores.

    Every operation opens its own connection and runs in the default
    executor, so the event loop never blocks on disk I/O.
    """

    def __init__(self, db_path: str | Path = "wali.db", timeout: float = 30.0):
        """Initialize the database handle.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self._initialized = False
        self._init_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """Get database connection with the schema in place."""
        if not self._initialized:
            self._initialize()
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            try:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript(SCHEMA)
                conn.commit()
            finally:
                conn.close()
            self._initialized = True

    async def run(self, func: Callable[..., T], *args: Any) -> T:
        """Run a synchronous storage function off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}") from e


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


class SQLiteDocumentStore(DocumentStore):
    """SQLite-based document and chunk storage."""

    def __init__(self, database: SQLiteDatabase):
        self.database = database

    async def put(self, document: Document) -> Document:
        return await self.database.run(self._put_sync, document)

    def _put_sync(self, document: Document) -> Document:
        now = datetime.now()
        conn = self.database.connect()
        try:
            row = None
            if document.id:
                row = conn.execute(
                    "SELECT created_at FROM documents WHERE id = ?",
                    (document.id,),
                ).fetchone()
            stored = document.model_copy(update={
                "id": document.id or new_id(),
                "file_size": len(document.content.encode("utf-8")),
                "created_at": _dt(row["created_at"]) if row else now,
                "updated_at": now,
            })
            conn.execute(
                """
                INSERT INTO documents (id, name, content, file_type, file_size, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    content = excluded.content,
                    file_type = excluded.file_type,
                    file_size = excluded.file_size,
                    updated_at = excluded.updated_at
                """,
                (
                    stored.id,
                    stored.name,
                    stored.content,
                    stored.file_type,
                    stored.file_size,
                    _ts(stored.created_at),
                    _ts(stored.updated_at),
                ),
            )
            conn.commit()
            return stored
        finally:
            conn.close()

    async def get(self, document_id: str) -> Optional[Document]:
        return await self.database.run(self._get_sync, document_id)

    def _get_sync(self, document_id: str) -> Optional[Document]:
        conn = self.database.connect()
        try:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
            if row is None:
                return None
            return Document(
                id=row["id"],
                name=row["name"],
                content=row["content"],
                file_type=row["file_type"],
                file_size=row["file_size"],
                created_at=_dt(row["created_at"]),
                updated_at=_dt(row["updated_at"]),
            )
        finally:
            conn.close()

    async def list(self) -> list[DocumentSummary]:
        return await self.database.run(self._list_sync)

    def _list_sync(self) -> list[DocumentSummary]:
        conn = self.database.connect()
        try:
            rows = conn.execute(
                """
                SELECT id, name, file_type, file_size, created_at, updated_at
                FROM documents
                ORDER BY created_at DESC, rowid DESC
                """
            ).fetchall()
            return [
                DocumentSummary(
                    id=row["id"],
                    name=row["name"],
                    file_type=row["file_type"],
                    file_size=row["file_size"],
                    created_at=_dt(row["created_at"]),
                    updated_at=_dt(row["updated_at"]),
                )
                for row in rows
            ]
        finally:
            conn.close()

    async def delete(self, document_id: str) -> None:
        await self.database.run(self._delete_sync, document_id)

    def _delete_sync(self, document_id: str) -> None:
        conn = self.database.connect()
        try:
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("document", document_id)
            conn.commit()
        finally:
            conn.close()

    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        await self.database.run(self._put_chunks_sync, document_id, chunks)

    def _put_chunks_sync(self, document_id: str, chunks: list[Chunk]) -> None:
        now = _ts(datetime.now())
        conn = self.database.connect()
        try:
            exists = conn.execute("SELECT 1 FROM documents WHERE id = ?", (document_id,)).fetchone()
            if exists is None:
                raise NotFoundError("document", document_id)
            conn.executemany(
                """
                INSERT OR REPLACE INTO chunks
                (id, document_id, content, chunk_index, start_index, end_index, embedding, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        document_id,
                        chunk.content,
                        chunk.position,
                        chunk.start_index,
                        chunk.end_index,
                        json.dumps(chunk.embedding) if chunk.embedding is not None else None,
                        json.dumps(chunk.metadata),
                        now,
                    )
                    for chunk in chunks
                ],
            )
            conn.commit()
        finally:
            conn.close()

    async def list_chunks(self, document_id: Optional[str] = None) -> list[Chunk]:
        return await self.database.run(self._list_chunks_sync, document_id)

    def _list_chunks_sync(self, document_id: Optional[str]) -> list[Chunk]:
        conn = self.database.connect()
        try:
            if document_id is None:
                rows = conn.execute(
                    "SELECT * FROM chunks ORDER BY document_id, chunk_index"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                    (document_id,),
                ).fetchall()
            return [
                Chunk(
                    id=row["id"],
                    document_id=row["document_id"],
                    content=row["content"],
                    position=row["chunk_index"],
                    start_index=row["start_index"],
                    end_index=row["end_index"],
                    embedding=json.loads(row["embedding"]) if row["embedding"] else None,
                    metadata=json.loads(row["metadata"]),
                )
                for row in rows
            ]
        finally:
            conn.close()

    async def delete_chunks(self, document_id: str) -> int:
        return await self.database.run(self._delete_chunks_sync, document_id)

    def _delete_chunks_sync(self, document_id: str) -> int:
        conn = self.database.connect()
        try:
            cursor = conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()


class SQLiteConversationStore(ConversationStore):
    """SQLite-based conversation and message storage.

    Messages are ordered by an autoincrement sequence, so two messages
    appended within the same clock tick still keep their append order.
    """

    def __init__(self, database: SQLiteDatabase):
        self.database = database

    @staticmethod
    def _conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            title=row["title"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _message(row: sqlite3.Row) -> Message:
        sources = json.loads(row["sources"]) if row["sources"] else []
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=Role(row["role"]),
            content=row["content"],
            created_at=_dt(row["created_at"]),
            sources=[SourceRef(**source) for source in sources],
        )

    async def create_conversation(self, title: str, conversation_id: Optional[str] = None) -> Conversation:
        return await self.database.run(self._create_sync, title, conversation_id)

    def _create_sync(self, title: str, conversation_id: Optional[str]) -> Conversation:
        now = datetime.now()
        conversation = Conversation(id=conversation_id or new_id(), title=title, created_at=now, updated_at=now)
        conn = self.database.connect()
        try:
            conn.execute(
                "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (conversation.id, conversation.title, _ts(now), _ts(now)),
            )
            conn.commit()
            return conversation
        finally:
            conn.close()

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return await self.database.run(self._get_sync, conversation_id)

    def _get_sync(self, conversation_id: str) -> Optional[Conversation]:
        conn = self.database.connect()
        try:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?",
                (conversation_id,),
            ).fetchone()
            return self._conversation(row) if row else None
        finally:
            conn.close()

    async def append_message(self, conversation_id: str, message: Message) -> Message:
        return await self.database.run(self._append_sync, conversation_id, message)

    def _append_sync(self, conversation_id: str, message: Message) -> Message:
        now = datetime.now()
        conn = self.database.connect()
        try:
            exists = conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
            if exists is None:
                raise NotFoundError("conversation", conversation_id)
            stored = message.model_copy(update={
                "id": message.id or new_id(),
                "conversation_id": conversation_id,
                "created_at": now,
            })
            conn.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, sources, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.id,
                    conversation_id,
                    stored.role.value,
                    stored.content,
                    json.dumps([s.model_dump() for s in stored.sources]) if stored.sources else None,
                    _ts(now),
                ),
            )
            conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (_ts(now), conversation_id),
            )
            conn.commit()
            return stored
        finally:
            conn.close()

    async def list_conversations(self, limit: Optional[int] = 50) -> list[Conversation]:
        return await self.database.run(self._list_conversations_sync, limit)

    def _list_conversations_sync(self, limit: Optional[int]) -> list[Conversation]:
        conn = self.database.connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM conversations
                ORDER BY updated_at DESC, created_at DESC, rowid DESC
                LIMIT ?
                """,
                (limit if limit is not None else -1,),
            ).fetchall()
            return [self._conversation(row) for row in rows]
        finally:
            conn.close()

    async def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> list[Message]:
        return await self.database.run(self._list_messages_sync, conversation_id, limit)

    def _list_messages_sync(self, conversation_id: str, limit: Optional[int]) -> list[Message]:
        conn = self.database.connect()
        try:
            exists = conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
            if exists is None:
                raise NotFoundError("conversation", conversation_id)
            if limit is None:
                rows = conn.execute(
                    "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
                    (conversation_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM (
                        SELECT * FROM messages WHERE conversation_id = ?
                        ORDER BY seq DESC LIMIT ?
                    ) ORDER BY seq ASC
                    """,
                    (conversation_id, limit),
                ).fetchall()
            return [self._message(row) for row in rows]
        finally:
            conn.close()

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.database.run(self._delete_sync, conversation_id)

    def _delete_sync(self, conversation_id: str) -> None:
        conn = self.database.connect()
        try:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError("conversation", conversation_id)
            conn.commit()
        finally:
            conn.close()


class SQLiteSettingsStore(SettingsStore):
    """SQLite-based key/value settings."""

    def __init__(self, database: SQLiteDatabase):
        self.database = database

    async def get_setting(self, key: str) -> Optional[str]:
        return await self.database.run(self._get_sync, key)

    def _get_sync(self, key: str) -> Optional[str]:
        conn = self.database.connect()
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    async def set_setting(self, key: str, value: str) -> None:
        await self.database.run(self._set_sync, key, value)

    def _set_sync(self, key: str, value: str) -> None:
        conn = self.database.connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _ts(datetime.now())),
            )
            conn.commit()
        finally:
            conn.close()
