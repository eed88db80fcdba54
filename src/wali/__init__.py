"""
Wali - a retrieval-augmented knowledge-base engine.
"""

from wali.backend import OperationResult, UploadResult, WaliBackend
from wali.core.message import Conversation, Message, Role, SourceRef
from wali.exceptions import (
    ErrorKind,
    GenerationError,
    NotFoundError,
    RetrievalError,
    StorageError,
    TransientUpstreamError,
    ValidationError,
    WaliError,
)
from wali.orchestrator import AnswerOrchestrator, AnswerRun, AnswerState, AskResult, assemble_prompt
from wali.rag import (
    # Documents
    Document,
    DocumentSummary,
    Chunk,
    SearchResult,
    KnowledgeBase,
    Indexer,
    IndexReport,
    # Embeddings
    DashScopeEmbedding,
    FakeEmbedding,
    OpenAIEmbedding,
    LocalEmbedding,
    # Index
    MemoryVectorStore,
    SmartChunker,
    FixedSizeChunker,
    VectorRetriever,
)
from wali.utils.config import Credentials, WaliConfig, load_config

__version__ = "0.1.0"
__all__ = [
    # Backend
    "WaliBackend",
    "OperationResult",
    "UploadResult",
    "WaliConfig",
    "Credentials",
    "load_config",
    # Conversations
    "Conversation",
    "Message",
    "Role",
    "SourceRef",
    "AnswerOrchestrator",
    "AnswerRun",
    "AnswerState",
    "AskResult",
    "assemble_prompt",
    # Errors
    "ErrorKind",
    "WaliError",
    "NotFoundError",
    "ValidationError",
    "RetrievalError",
    "GenerationError",
    "TransientUpstreamError",
    "StorageError",
    # RAG
    "Document",
    "DocumentSummary",
    "Chunk",
    "SearchResult",
    "KnowledgeBase",
    "Indexer",
    "IndexReport",
    "DashScopeEmbedding",
    "FakeEmbedding",
    "OpenAIEmbedding",
    "LocalEmbedding",
    "MemoryVectorStore",
    "SmartChunker",
    "FixedSizeChunker",
    "VectorRetriever",
]
