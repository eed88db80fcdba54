"""Knowledge base: the document lifecycle on top of store, indexer and retriever."""

import logging
from typing import Optional, TYPE_CHECKING

from wali.exceptions import NotFoundError, WaliError
from wali.utils.locks import KeyedLock

from .base import BaseRetriever
from .document import Document, DocumentSummary, SearchResult, new_id
from .indexer import Indexer, IndexReport

if TYPE_CHECKING:
    from wali.store.base import DocumentStore

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Uploaded documents and their searchable index.

    Work on one document (put, index, delete) is serialized by a
    per-document lock; different documents proceed in parallel. Reads
    through ``retrieve`` take no lock.
    """

    def __init__(self, store: "DocumentStore", indexer: Indexer, retriever: BaseRetriever):
        self.store = store
        self.indexer = indexer
        self.retriever = retriever
        self._locks = KeyedLock()

    async def add_document(
        self,
        name: str,
        content: str,
        file_type: Optional[str] = None,
    ) -> tuple[Document, IndexReport]:
        """Store and index a new document.

        If indexing fails outright, the document record is removed again so
        no unsearchable document is left behind.

        Raises:
            ValidationError: If the content yields no chunks
            RetrievalError: If no chunk could be embedded
        """
        document_id = new_id()
        async with self._locks.hold(document_id):
            document = await self.store.put(Document(
                id=document_id,
                name=name,
                content=content,
                file_type=file_type,
            ))
            try:
                report = await self.indexer.index_document(document)
            except WaliError:
                await self._remove(document_id)
                raise
            return document, report

    async def update_document(self, document_id: str, content: str) -> tuple[Document, IndexReport]:
        """Replace the content of an existing document and re-index it.

        If the new content cannot be indexed, the previous content and its
        chunks are put back before the error is raised.

        Raises:
            NotFoundError: If the document does not exist
            ValidationError: If the content yields no chunks
            RetrievalError: If no chunk could be embedded
        """
        async with self._locks.hold(document_id):
            existing = await self.store.get(document_id)
            if existing is None:
                raise NotFoundError("document", document_id)
            previous_chunks = await self.store.list_chunks(document_id)
            await self.indexer.retract_document(document_id)
            document = await self.store.put(existing.model_copy(update={"content": content}))
            try:
                report = await self.indexer.index_document(document)
            except WaliError:
                logger.warning(f"Re-indexing document {document_id} failed; restoring previous content")
                await self.indexer.retract_document(document_id)
                restored = await self.store.put(existing)
                await self.indexer.restore(restored, previous_chunks)
                raise
            return document, report

    async def delete_document(self, document_id: str) -> None:
        """Delete a document, its chunks and its index entries.

        Index entries go first, so a query issued after the call returns
        never sees a chunk of the deleted document.

        Raises:
            NotFoundError: If the document does not exist
        """
        async with self._locks.hold(document_id):
            if await self.store.get(document_id) is None:
                raise NotFoundError("document", document_id)
            await self._remove(document_id)
        logger.info(f"Deleted document {document_id}")

    async def _remove(self, document_id: str) -> None:
        await self.indexer.retract_document(document_id)
        await self.store.delete(document_id)

    async def get_document(self, document_id: str) -> Optional[Document]:
        return await self.store.get(document_id)

    async def list_documents(self) -> list[DocumentSummary]:
        return await self.store.list()

    async def retrieve(
        self,
        query: str,
        top_k: int,
        document_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        return await self.retriever.retrieve(query, top_k, document_ids)

    async def rebuild_index(self) -> int:
        return await self.indexer.rebuild()
