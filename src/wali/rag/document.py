"""Document, Chunk and index data structures for RAG."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


class DocumentSummary(BaseModel):
    """A document without its content payload."""
    id: str
    name: str
    file_type: Optional[str] = None
    file_size: int = 0
    created_at: datetime
    updated_at: datetime


class Document(BaseModel):
    """An uploaded document.

    Attributes:
        id: Unique identifier, assigned by the store when empty
        name: Display name shown in listings and source labels
        content: Raw text content
        file_type: Optional type tag (usually the file extension)
        file_size: Byte length of the UTF-8 encoded content
        created_at: Creation time, kept across re-puts
        updated_at: Time of the last put
    """
    id: str = ""
    name: str
    content: str
    file_type: Optional[str] = None
    file_size: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def summary(self) -> DocumentSummary:
        return DocumentSummary(
            id=self.id,
            name=self.name,
            file_type=self.file_type,
            file_size=self.file_size,
            created_at=self.created_at or datetime.now(),
            updated_at=self.updated_at or self.created_at or datetime.now(),
        )

    def __repr__(self) -> str:
        return f"Document(id={self.id!r}, name={self.name!r}, file_size={self.file_size})"


class Chunk(BaseModel):
    """A chunk of a document."""
    id: str
    document_id: str
    content: str
    position: int = 0
    start_index: int = 0
    end_index: int = 0
    embedding: Optional[list[float]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return f"Chunk(id={self.id!r}, doc_id={self.document_id!r}, content={content_preview!r})"


class IndexEntry(BaseModel):
    """What the vector store keeps per chunk.

    Carries enough provenance to label a result without reading the
    document store on the retrieval path.
    """
    chunk_id: str
    document_id: str
    document_name: str
    document_created_at: datetime
    position: int
    content: str
    embedding: list[float]
    model_id: str

    def to_chunk(self) -> Chunk:
        return Chunk(
            id=self.chunk_id,
            document_id=self.document_id,
            content=self.content,
            position=self.position,
        )


class SearchResult(BaseModel):
    """A search result from the retriever."""
    chunk: Chunk
    score: float
    document_id: str
    document_name: str

    def __repr__(self) -> str:
        return f"SearchResult(chunk_id={self.chunk.id!r}, score={self.score:.4f})"
