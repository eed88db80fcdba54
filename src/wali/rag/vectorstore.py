"""Vector store implementations."""

import logging
import math
from typing import Optional

from .base import BaseVectorStore
from .document import IndexEntry, SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")
    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot_product / (norm_a * norm_b)


def rank_key(result: SearchResult, created_at: dict[str, object]) -> tuple:
    """Descending score, then older document, then earlier position, then chunk id."""
    return (-result.score, created_at[result.chunk.id], result.chunk.position, result.chunk.id)


class MemoryVectorStore(BaseVectorStore):
    """In-memory exact (flat scan) vector store.

    Mutations complete synchronously inside the coroutine, so an entry added
    or removed is visible to every search issued after the call returns.
    """

    def __init__(self):
        self._entries: dict[str, IndexEntry] = {}
        self._by_document: dict[str, set[str]] = {}

    async def add(self, entries: list[IndexEntry]) -> list[str]:
        ids = []
        for entry in entries:
            self._entries[entry.chunk_id] = entry
            self._by_document.setdefault(entry.document_id, set()).add(entry.chunk_id)
            ids.append(entry.chunk_id)
        return ids

    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        document_ids: Optional[set[str]] = None,
    ) -> list[SearchResult]:
        if not self._entries or k <= 0:
            return []
        results = []
        created_at = {}
        for entry in list(self._entries.values()):
            if document_ids is not None and entry.document_id not in document_ids:
                continue
            score = cosine_similarity(query_embedding, entry.embedding)
            results.append(SearchResult(
                chunk=entry.to_chunk(),
                score=score,
                document_id=entry.document_id,
                document_name=entry.document_name,
            ))
            created_at[entry.chunk_id] = entry.document_created_at
        results.sort(key=lambda r: rank_key(r, created_at))
        return results[:k]

    async def remove_document(self, document_id: str) -> int:
        chunk_ids = self._by_document.pop(document_id, set())
        for chunk_id in chunk_ids:
            self._entries.pop(chunk_id, None)
        if chunk_ids:
            logger.debug(f"Removed {len(chunk_ids)} index entries of document {document_id}")
        return len(chunk_ids)

    async def get(self, chunk_id: str) -> Optional[IndexEntry]:
        return self._entries.get(chunk_id)

    async def count(self, document_ids: Optional[set[str]] = None) -> int:
        if document_ids is None:
            return len(self._entries)
        return sum(len(self._by_document.get(doc_id, ())) for doc_id in document_ids)

    async def model_ids(self) -> set[str]:
        return {entry.model_id for entry in self._entries.values()}

    async def clear(self) -> bool:
        self._entries.clear()
        self._by_document.clear()
        return True
