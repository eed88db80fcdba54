"""Retriever implementations."""

import logging
from typing import Optional

from wali.exceptions import RetrievalError, ValidationError
from wali.utils.retry import RetryPolicy, call_with_retry

from .base import BaseEmbedding, BaseRetriever, BaseVectorStore
from .document import SearchResult

logger = logging.getLogger(__name__)


class VectorRetriever(BaseRetriever):
    """Vector similarity retriever.

    The query is embedded with the same model that indexed the corpus; an
    index holding vectors from another model is rejected instead of being
    compared in a different embedding space.
    """

    def __init__(self, embedding: BaseEmbedding, vectorstore: BaseVectorStore, retry_policy: Optional[RetryPolicy] = None):
        self.embedding = embedding
        self.vectorstore = vectorstore
        self.retry_policy = retry_policy or RetryPolicy()

    async def retrieve(
        self,
        query: str,
        top_k: int = 5,
        document_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        if top_k < 1:
            raise ValidationError(f"top_k must be a positive integer, got {top_k}")
        scope = set(document_ids) if document_ids is not None else None
        if await self.vectorstore.count(scope) == 0:
            return []

        foreign = (await self.vectorstore.model_ids()) - {self.embedding.model_id}
        if foreign:
            raise RetrievalError(
                f"Index contains vectors from {sorted(foreign)} but queries use {self.embedding.model_id}"
            )

        query_embedding = await call_with_retry(
            lambda: self.embedding.embed_query(query),
            self.retry_policy,
            on_fatal=RetrievalError,
            operation="Query embedding",
        )
        try:
            results = await self.vectorstore.search(query_embedding, top_k, scope)
        except ValueError as e:
            raise RetrievalError(f"Index search failed: {e}") from e
        logger.debug(f"Retrieved {len(results)} chunks for query ({len(query)} chars)")
        return results
