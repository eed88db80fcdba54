"""
Command facade for the knowledge-base engine.
Wires configuration, stores, the knowledge base and the answer orchestrator
behind the operations a desktop client calls.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from wali.core.message import Conversation, Message, Role
from wali.exceptions import NotFoundError, RetrievalError, ValidationError
from wali.files import FileInfo, file_type_of, get_file_info, read_file_content
from wali.orchestrator import AnswerOrchestrator, AskResult
from wali.providers import DashScopeProvider, LLMProvider, OpenAIProvider
from wali.rag import (
    BaseEmbedding,
    DashScopeEmbedding,
    DocumentSummary,
    FakeEmbedding,
    Indexer,
    KnowledgeBase,
    LocalEmbedding,
    MemoryVectorStore,
    OpenAIEmbedding,
    SmartChunker,
    VectorRetriever,
)
from wali.store import (
    ConversationStore,
    DocumentStore,
    SettingsStore,
    SQLiteConversationStore,
    SQLiteDatabase,
    SQLiteDocumentStore,
    SQLiteSettingsStore,
)
from wali.utils.config import Credentials, WaliConfig
from wali.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

API_KEY_SETTING = "qwen_api_key"


class OperationResult(BaseModel):
    success: bool
    message: str


class UploadResult(BaseModel):
    """Outcome of a document upload."""
    success: bool
    message: str
    document_id: Optional[str] = None
    chunks: int = 0
    failed_chunks: int = 0


def create_embedding(config: WaliConfig, credentials: Credentials) -> BaseEmbedding:
    """Create the embedding model named by ``config.embedding_provider``."""
    name = config.embedding_provider
    if name == "dashscope":
        return DashScopeEmbedding(
            credentials,
            model=config.embedding_model,
            base_url=config.base_url,
            timeout=config.embedding_timeout,
        )
    if name == "openai":
        return OpenAIEmbedding(credentials, model=config.embedding_model, base_url=config.base_url)
    if name == "local":
        return LocalEmbedding(model_name=config.embedding_model)
    if name == "fake":
        return FakeEmbedding()
    raise ValueError(f"Unknown embedding provider: {name}")


def create_provider(config: WaliConfig, credentials: Credentials) -> LLMProvider:
    """Create the generative model provider named by ``config.provider``."""
    if config.provider == "dashscope":
        return DashScopeProvider(credentials, base_url=config.base_url, timeout=config.generation_timeout)
    if config.provider == "openai":
        return OpenAIProvider(credentials, base_url=config.base_url)
    raise ValueError(f"Unknown provider: {config.provider}")


class WaliBackend:
    """
    Backend that exposes the knowledge-base commands.

    This class manages:
    - The process-wide API key (persisted in settings)
    - Document upload, listing and deletion
    - Question answering and conversation history
    """

    def __init__(
        self,
        config: WaliConfig,
        credentials: Credentials,
        documents: DocumentStore,
        conversations: ConversationStore,
        settings: SettingsStore,
        knowledge: KnowledgeBase,
        orchestrator: AnswerOrchestrator,
    ):
        self.config = config
        self.credentials = credentials
        self.documents = documents
        self.conversations = conversations
        self.settings = settings
        self.knowledge = knowledge
        self.orchestrator = orchestrator

    @classmethod
    async def create(
        cls,
        config: Optional[WaliConfig] = None,
        *,
        embedding: Optional[BaseEmbedding] = None,
        provider: Optional[LLMProvider] = None,
        documents: Optional[DocumentStore] = None,
        conversations: Optional[ConversationStore] = None,
        settings: Optional[SettingsStore] = None,
        credentials: Optional[Credentials] = None,
    ) -> WaliBackend:
        """
        Build a backend from configuration.

        Stores default to SQLite under ``config.data_dir``. A previously
        saved API key is loaded and the vector index is rebuilt from the
        persisted chunks.
        """
        config = config or WaliConfig()
        credentials = credentials or Credentials()
        if documents is None or conversations is None or settings is None:
            database = SQLiteDatabase(config.database_path)
            documents = documents or SQLiteDocumentStore(database)
            conversations = conversations or SQLiteConversationStore(database)
            settings = settings or SQLiteSettingsStore(database)

        saved_key = await settings.get_setting(API_KEY_SETTING)
        if saved_key and not credentials.is_set:
            credentials.set(saved_key)
            logger.info("Loaded saved API key")

        embedding = embedding or create_embedding(config, credentials)
        provider = provider or create_provider(config, credentials)

        vectorstore = MemoryVectorStore()
        embedding_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            timeout=config.embedding_timeout,
        )
        indexer = Indexer(
            documents,
            vectorstore,
            embedding,
            SmartChunker(config.chunk_size, config.chunk_overlap),
            batch_size=config.embedding_batch_size,
            concurrency=config.embedding_concurrency,
            retry_policy=embedding_policy,
        )
        retriever = VectorRetriever(embedding, vectorstore, retry_policy=embedding_policy)
        knowledge = KnowledgeBase(documents, indexer, retriever)
        orchestrator = AnswerOrchestrator(conversations, retriever, provider, credentials, config, documents=documents)

        backend = cls(config, credentials, documents, conversations, settings, knowledge, orchestrator)
        await knowledge.rebuild_index()
        return backend

    # Credentials

    async def set_api_key(self, api_key: str) -> OperationResult:
        """Set the API key for this process and persist it."""
        api_key = (api_key or "").strip()
        if not api_key:
            return OperationResult(success=False, message="API key must not be empty")
        self.credentials.set(api_key)
        await self.settings.set_setting(API_KEY_SETTING, api_key)
        logger.info("API key configured")
        return OperationResult(success=True, message="API key saved")

    async def get_api_key_status(self) -> bool:
        return self.credentials.is_set

    # Questions and conversations

    async def ask_question(self, question: str, conversation_id: Optional[str] = None) -> AskResult:
        return await self.orchestrator.ask(question, conversation_id)

    async def get_conversations(self) -> list[Conversation]:
        return await self.conversations.list_conversations(limit=50)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """
        Messages of a conversation in order.

        Sources pointing to documents deleted since are left out.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        messages = await self.conversations.list_messages(conversation_id)
        if not any(message.sources for message in messages):
            return messages
        existing = {summary.id for summary in await self.documents.list()}
        return [
            message.model_copy(update={
                "sources": [s for s in message.sources if s.document_id in existing],
            })
            if message.role is Role.ASSISTANT else message
            for message in messages
        ]

    async def delete_conversation(self, conversation_id: str) -> bool:
        try:
            await self.orchestrator.delete_conversation(conversation_id)
        except NotFoundError:
            return False
        return True

    # Documents

    def _validate_upload(self, name: str, content: str, file_type: Optional[str]) -> Optional[str]:
        if not name or not name.strip():
            return "Document name must not be empty"
        if not content or not content.strip():
            return "Document content must not be empty"
        size = len(content.encode("utf-8"))
        if size > self.config.max_upload_bytes:
            return f"Document is too large ({size} bytes, limit {self.config.max_upload_bytes})"
        if file_type is not None and file_type not in self.config.allowed_file_types:
            return f"Unsupported file type: {file_type}"
        return None

    async def upload_document(self, name: str, content: str, file_type: Optional[str] = None) -> UploadResult:
        """Store a document and index its chunks."""
        if file_type is not None:
            file_type = file_type.lower().lstrip(".") or None
        error = self._validate_upload(name, content, file_type)
        if error:
            return UploadResult(success=False, message=error)
        if self.knowledge.indexer.embedding.requires_api_key and not self.credentials.is_set:
            return UploadResult(success=False, message="Please configure the API key first")

        try:
            document, report = await self.knowledge.add_document(name.strip(), content, file_type)
        except (ValidationError, RetrievalError) as e:
            logger.error(f"Upload of {name} failed: {e}")
            return UploadResult(success=False, message=str(e))

        message = f"Document '{document.name}' uploaded ({len(report.indexed_chunk_ids)} chunks indexed)"
        if report.partial:
            message += f"; {len(report.failed)} of {report.total} chunks failed to embed"
        return UploadResult(
            success=True,
            message=message,
            document_id=document.id,
            chunks=len(report.indexed_chunk_ids),
            failed_chunks=len(report.failed),
        )

    async def upload_document_from_path(self, file_path: str) -> UploadResult:
        """Upload a file from disk, named after the file and typed by its extension."""
        path = Path(file_path)
        try:
            content = await read_file_content(file_path)
        except (NotFoundError, ValidationError) as e:
            return UploadResult(success=False, message=str(e))
        return await self.upload_document(path.name, content, file_type_of(path))

    async def get_documents(self) -> list[DocumentSummary]:
        return await self.knowledge.list_documents()

    async def delete_document(self, document_id: str) -> bool:
        try:
            await self.knowledge.delete_document(document_id)
        except NotFoundError:
            return False
        return True

    # Files

    async def read_file_content(self, file_path: str) -> str:
        return await read_file_content(file_path)

    async def get_file_info(self, file_path: str) -> FileInfo:
        return await get_file_info(file_path)

    async def aclose(self) -> None:
        """Close HTTP clients held by the model adapters."""
        for component in (self.knowledge.indexer.embedding, self.orchestrator.provider):
            close = getattr(component, "aclose", None)
            if close is not None:
                await close()
