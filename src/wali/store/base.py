"""Abstract storage backends for documents, conversations and settings."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from wali.core.message import Conversation, Message
from wali.rag.document import Chunk, Document, DocumentSummary


class DocumentStore(ABC):
    """Durable record of uploaded documents and their chunks."""

    @abstractmethod
    async def put(self, document: Document) -> Document:
        """Insert or replace a document.

        Assigns an id when the document has none and stamps timestamps.
        Re-putting an existing id keeps ``created_at`` and bumps
        ``updated_at``.

        Returns:
            The stored document
        """
        pass

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Document]:
        """Load a document or return None if absent."""
        pass

    @abstractmethod
    async def list(self) -> list[DocumentSummary]:
        """List documents without content, newest first."""
        pass

    @abstractmethod
    async def delete(self, document_id: str) -> None:
        """Remove the document record and any chunk rows left.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def put_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        """Persist chunks (with embeddings) of an existing document."""
        pass

    @abstractmethod
    async def list_chunks(self, document_id: Optional[str] = None) -> list[Chunk]:
        """List chunks of one document, or of all documents, in position order."""
        pass

    @abstractmethod
    async def delete_chunks(self, document_id: str) -> int:
        """Remove all chunks of a document.

        Returns:
            Number of chunks removed
        """
        pass


class ConversationStore(ABC):
    """Durable record of conversations and their messages."""

    @abstractmethod
    async def create_conversation(self, title: str, conversation_id: Optional[str] = None) -> Conversation:
        """Create a conversation, with a fresh id unless one is given.

        Raises:
            StorageError: If a conversation with that id already exists
        """
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def append_message(self, conversation_id: str, message: Message) -> Message:
        """Append a message, assigning its id and timestamp.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        pass

    @abstractmethod
    async def list_conversations(self, limit: Optional[int] = 50) -> list[Conversation]:
        """List conversations, most recently updated first."""
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> list[Message]:
        """List messages in append order; with ``limit`` only the trailing window.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and all its messages.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        pass


class SettingsStore(ABC):
    """Key/value application settings."""

    @abstractmethod
    async def get_setting(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None:
        pass
