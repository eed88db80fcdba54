"""In-memory stores, used in tests and for throwaway sessions."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from wali.core.message import Conversation, Message
from wali.exceptions import NotFoundError, StorageError
from wali.rag.document import Chunk, Document, DocumentSummary, new_id

from .base import ConversationStore, DocumentStore, SettingsStore


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store."""

    def __init__(self):
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, dict[str, Chunk]] = {}

    async def put(self, document: Document) -> Document:
        now = datetime.now()
        existing = self._documents.get(document.id) if document.id else None
        stored = document.model_copy(update={
            "id": document.id or new_id(),
            "file_size": len(document.content.encode("utf-8")),
            "created_at": existing.created_at if existing else now,
            "updated_at": now,
        })
        self._documents[stored.id] = stored
        return stored

    async def get(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    async def list(self) -> list[DocumentSummary]:
        # Insertion order breaks timestamp ties
        ordered = sorted(enumerate(self._documents.values()), key=lambda p: (p[1].created_at, p[0]), reverse=True)
        return [document.summary() for _, document in ordered]

    async def delete(self, document_id: str) -> None:
        if document_id not in self._documents:
            raise NotFoundError("document", document_id)
        del self._documents[document_id]
        self._chunks.pop(document_id, None)

    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        if document_id not in self._documents:
            raise NotFoundError("document", document_id)
        stored = self._chunks.setdefault(document_id, {})
        for chunk in chunks:
            stored[chunk.id] = chunk

    async def list_chunks(self, document_id: Optional[str] = None) -> list[Chunk]:
        if document_id is not None:
            return sorted(self._chunks.get(document_id, {}).values(), key=lambda c: c.position)
        chunks = []
        for doc_id in sorted(self._chunks):
            chunks.extend(sorted(self._chunks[doc_id].values(), key=lambda c: c.position))
        return chunks

    async def delete_chunks(self, document_id: str) -> int:
        return len(self._chunks.pop(document_id, {}))


class MemoryConversationStore(ConversationStore):
    """Dictionary-backed conversation store."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}

    async def create_conversation(self, title: str, conversation_id: Optional[str] = None) -> Conversation:
        now = datetime.now()
        conversation = Conversation(id=conversation_id or new_id(), title=title, created_at=now, updated_at=now)
        if conversation.id in self._conversations:
            raise StorageError(f"Conversation {conversation.id} already exists")
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def append_message(self, conversation_id: str, message: Message) -> Message:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("conversation", conversation_id)
        now = datetime.now()
        stored = message.model_copy(update={
            "id": message.id or new_id(),
            "conversation_id": conversation_id,
            "created_at": now,
        })
        self._messages[conversation_id].append(stored)
        self._conversations[conversation_id] = conversation.model_copy(update={"updated_at": now})
        return stored

    async def list_conversations(self, limit: Optional[int] = 50) -> list[Conversation]:
        ordered = sorted(
            enumerate(self._conversations.values()),
            key=lambda p: (p[1].updated_at, p[1].created_at, p[0]),
            reverse=True,
        )
        conversations = [conversation for _, conversation in ordered]
        return conversations if limit is None else conversations[:limit]

    async def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> list[Message]:
        if conversation_id not in self._conversations:
            raise NotFoundError("conversation", conversation_id)
        messages = self._messages[conversation_id]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return list(messages)

    async def delete_conversation(self, conversation_id: str) -> None:
        if conversation_id not in self._conversations:
            raise NotFoundError("conversation", conversation_id)
        del self._conversations[conversation_id]
        del self._messages[conversation_id]


class MemorySettingsStore(SettingsStore):
    def __init__(self):
        self._settings: dict[str, str] = {}

    async def get_setting(self, key: str) -> Optional[str]:
        return self._settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        self._settings[key] = value
