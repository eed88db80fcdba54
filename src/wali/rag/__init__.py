"""Document indexing and retrieval for the knowledge base."""

from .document import Chunk, Document, DocumentSummary, IndexEntry, SearchResult
from .base import BaseChunker, BaseEmbedding, BaseRetriever, BaseVectorStore
from .embeddings import DashScopeEmbedding, FakeEmbedding, LocalEmbedding, OpenAIEmbedding
from .vectorstore import MemoryVectorStore, cosine_similarity
from .chunking import FixedSizeChunker, SmartChunker
from .retriever import VectorRetriever
from .indexer import FailedChunk, Indexer, IndexReport
from .pipeline import KnowledgeBase

__all__ = [
    "Document", "DocumentSummary", "Chunk", "IndexEntry", "SearchResult",
    "BaseEmbedding", "BaseVectorStore", "BaseRetriever", "BaseChunker",
    "DashScopeEmbedding", "FakeEmbedding", "OpenAIEmbedding", "LocalEmbedding",
    "MemoryVectorStore", "cosine_similarity",
    "FixedSizeChunker", "SmartChunker",
    "VectorRetriever",
    "Indexer", "IndexReport", "FailedChunk",
    "KnowledgeBase",
]
