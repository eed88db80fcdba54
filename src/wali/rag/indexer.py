"""Chunk, embed and index documents."""

import asyncio
import logging
import math
from typing import Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

from wali.exceptions import RetrievalError, ValidationError, WaliError
from wali.utils.retry import RetryPolicy, call_with_retry

from .base import BaseChunker, BaseEmbedding, BaseVectorStore
from .document import Chunk, Document, IndexEntry

if TYPE_CHECKING:
    from wali.store.base import DocumentStore

logger = logging.getLogger(__name__)


class FailedChunk(BaseModel):
    """A chunk that could not be embedded."""
    position: int
    error: str


class IndexReport(BaseModel):
    """Outcome of indexing one document."""
    document_id: str
    indexed_chunk_ids: list[str] = Field(default_factory=list)
    failed: list[FailedChunk] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    @property
    def total(self) -> int:
        return len(self.indexed_chunk_ids) + len(self.failed)


class Indexer:
    """Turns documents into searchable index entries.

    Chunks are embedded in batches, several batches in flight at once. A
    batch that fails is retried chunk by chunk so one bad chunk fails only
    itself. Chunks are persisted together with their embeddings, which lets
    ``rebuild`` restore the vector store without calling the model again.
    """

    def __init__(
        self,
        store: "DocumentStore",
        vectorstore: BaseVectorStore,
        embedding: BaseEmbedding,
        chunker: BaseChunker,
        batch_size: int = 25,
        concurrency: int = 10,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be positive")
        self.store = store
        self.vectorstore = vectorstore
        self.embedding = embedding
        self.chunker = chunker
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()

    async def index_document(self, document: Document) -> IndexReport:
        """Index a stored document.

        Args:
            document: Document as returned by the document store

        Returns:
            Report of indexed and failed chunks

        Raises:
            ValidationError: If the document yields no chunks
            RetrievalError: If no chunk could be embedded
        """
        chunks = self.chunker.chunk(document)
        if not chunks:
            raise ValidationError(f"Document {document.name!r} has no indexable text")

        semaphore = asyncio.Semaphore(self.concurrency)
        batches = [chunks[i:i + self.batch_size] for i in range(0, len(chunks), self.batch_size)]
        batch_results = await asyncio.gather(*(self._embed_batch(batch, semaphore) for batch in batches))

        embedded: list[Chunk] = []
        failed: list[FailedChunk] = []
        dimension: Optional[int] = None
        for batch, results in zip(batches, batch_results):
            for chunk, (vector, error) in zip(batch, results):
                if error is None:
                    error = self._check_vector(vector, dimension)
                if error is not None:
                    failed.append(FailedChunk(position=chunk.position, error=error))
                    continue
                dimension = len(vector)
                embedded.append(chunk.model_copy(update={
                    "embedding": vector,
                    "metadata": {**chunk.metadata, "model_id": self.embedding.model_id},
                }))

        report = IndexReport(document_id=document.id, failed=failed)
        if not embedded:
            detail = failed[0].error if failed else "no chunks"
            logger.error(f"Indexing {document.name} failed: all {len(chunks)} chunks failed ({detail})")
            raise RetrievalError(f"Failed to embed document {document.name!r}: {detail}")

        await self.store.put_chunks(document.id, embedded)
        report.indexed_chunk_ids = await self.vectorstore.add([
            self._entry(document, chunk) for chunk in embedded
        ])
        if failed:
            logger.warning(
                f"Indexed {document.name}: {len(embedded)}/{len(chunks)} chunks, "
                f"{len(failed)} failed"
            )
        else:
            logger.info(f"Indexed {document.name}: {len(embedded)} chunks")
        return report

    async def _embed_batch(
        self,
        batch: list[Chunk],
        semaphore: asyncio.Semaphore,
    ) -> list[tuple[Optional[list[float]], Optional[str]]]:
        async with semaphore:
            try:
                vectors = await self._embed([chunk.content for chunk in batch])
                if len(vectors) != len(batch):
                    raise RetrievalError(
                        f"Embedding returned {len(vectors)} vectors for {len(batch)} texts"
                    )
                return [(vector, None) for vector in vectors]
            except WaliError as e:
                if len(batch) == 1:
                    return [(None, str(e))]
                logger.warning(f"Embedding batch of {len(batch)} chunks failed ({e}); retrying one by one")

            results = []
            for chunk in batch:
                try:
                    vectors = await self._embed([chunk.content])
                    results.append((vectors[0] if vectors else None, None))
                except WaliError as e:
                    results.append((None, str(e)))
            return results

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        return await call_with_retry(
            lambda: self.embedding.embed_documents(texts),
            self.retry_policy,
            on_fatal=RetrievalError,
            operation="Chunk embedding",
        )

    @staticmethod
    def _check_vector(vector: Optional[list[float]], dimension: Optional[int]) -> Optional[str]:
        if not vector:
            return "empty embedding"
        if dimension is not None and len(vector) != dimension:
            return f"embedding dimension {len(vector)} does not match {dimension}"
        if not all(math.isfinite(value) for value in vector):
            return "embedding contains non-finite values"
        return None

    def _entry(self, document: Document, chunk: Chunk) -> IndexEntry:
        return IndexEntry(
            chunk_id=chunk.id,
            document_id=document.id,
            document_name=document.name,
            document_created_at=document.created_at,
            position=chunk.position,
            content=chunk.content,
            embedding=chunk.embedding,
            model_id=chunk.metadata.get("model_id", self.embedding.model_id),
        )

    async def restore(self, document: Document, chunks: list[Chunk]) -> int:
        """Put previously indexed chunks of a document back into store and index.

        Args:
            document: The document the chunks belong to
            chunks: Chunks as returned by ``list_chunks``, embeddings included

        Returns:
            Number of entries restored
        """
        chunks = [chunk for chunk in chunks if chunk.embedding]
        if not chunks:
            return 0
        await self.store.put_chunks(document.id, chunks)
        await self.vectorstore.add([self._entry(document, chunk) for chunk in chunks])
        return len(chunks)

    async def retract_document(self, document_id: str) -> int:
        """Remove a document from the index, then drop its chunk rows."""
        removed = await self.vectorstore.remove_document(document_id)
        await self.store.delete_chunks(document_id)
        return removed

    async def rebuild(self) -> int:
        """Reload the vector store from persisted chunks.

        Returns:
            Number of entries restored
        """
        await self.vectorstore.clear()
        documents = {summary.id: summary for summary in await self.store.list()}
        entries = []
        for chunk in await self.store.list_chunks():
            summary = documents.get(chunk.document_id)
            if summary is None or not chunk.embedding:
                continue
            entries.append(IndexEntry(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                document_name=summary.name,
                document_created_at=summary.created_at,
                position=chunk.position,
                content=chunk.content,
                embedding=chunk.embedding,
                model_id=chunk.metadata.get("model_id", self.embedding.model_id),
            ))
        await self.vectorstore.add(entries)
        logger.info(f"Rebuilt index with {len(entries)} chunks from {len(documents)} documents")
        return len(entries)
