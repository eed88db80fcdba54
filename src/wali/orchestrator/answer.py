"""Question answering: retrieval, prompt assembly, generation, persistence."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from wali.core.message import Message, SourceRef, derive_title
from wali.exceptions import (
    ErrorKind,
    GenerationError,
    NotFoundError,
    ValidationError,
    WaliError,
)
from wali.providers.base import LLMProvider
from wali.rag.base import BaseRetriever
from wali.rag.document import SearchResult, new_id
from wali.store.base import ConversationStore, DocumentStore
from wali.utils.config import Credentials, WaliConfig
from wali.utils.locks import KeyedLock
from wali.utils.retry import RetryPolicy, call_with_retry

from .prompt import DEFAULT_PREAMBLE, assemble_prompt

logger = logging.getLogger(__name__)


class AnswerState(str, Enum):
    """Stages of one question-answering request."""
    RECEIVED = "received"
    CONTEXT_RESOLVED = "context_resolved"
    RETRIEVED = "retrieved"
    PROMPT_ASSEMBLED = "prompt_assembled"
    GENERATED = "generated"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AnswerRun:
    """Trace of one request through the answer state machine."""
    question: str
    conversation_id: Optional[str] = None
    run_id: str = field(default_factory=lambda: new_id()[:8])
    state: AnswerState = AnswerState.RECEIVED
    transitions: list[AnswerState] = field(default_factory=lambda: [AnswerState.RECEIVED])
    failure: Optional[ErrorKind] = None
    new_conversation: bool = False
    started_at: datetime = field(default_factory=datetime.now)

    def advance(self, state: AnswerState) -> None:
        logger.debug(f"Answer run {self.run_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def fail(self, kind: ErrorKind) -> None:
        logger.debug(f"Answer run {self.run_id}: {self.state.value} -> failed({kind.value})")
        self.state = AnswerState.FAILED
        self.failure = kind
        self.transitions.append(AnswerState.FAILED)


class AskResult(BaseModel):
    """Response to a question."""
    success: bool
    answer: str = ""
    sources: list[str] = Field(default_factory=list)
    conversation_id: str
    error: Optional[str] = None


def source_refs(results: list[SearchResult]) -> list[SourceRef]:
    """Attributions for an answer, one per distinct chunk in rank order."""
    refs, seen = [], set()
    for result in results:
        if result.chunk.id in seen:
            continue
        seen.add(result.chunk.id)
        refs.append(SourceRef(
            document_id=result.document_id,
            chunk_id=result.chunk.id,
            document_name=result.document_name,
        ))
    return refs


def source_document_ids(refs: list[SourceRef]) -> list[str]:
    return list(dict.fromkeys(ref.document_id for ref in refs))


class AnswerOrchestrator:
    """
    Drives a question through retrieval, generation and persistence.

    Appends and deletes for one conversation are serialized through a
    per-conversation lock, so the question and answer of one request are
    always stored next to each other. A request whose conversation was
    deleted while it was in flight discards its result instead of
    persisting it.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        retriever: BaseRetriever,
        provider: LLMProvider,
        credentials: Credentials,
        config: Optional[WaliConfig] = None,
        preamble: str = DEFAULT_PREAMBLE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        documents: Optional[DocumentStore] = None,
    ):
        self.conversations = conversations
        self.documents = documents
        self.retriever = retriever
        self.provider = provider
        self.credentials = credentials
        self.config = config or WaliConfig()
        self.preamble = preamble
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            timeout=self.config.generation_timeout,
        )
        self._locks = KeyedLock()

    async def ask(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        on_run: Optional[Callable[[AnswerRun], None]] = None,
    ) -> AskResult:
        """
        Answer a question, optionally within an existing conversation.

        Args:
            question: The user's question
            conversation_id: Conversation to continue, or None for a new one
            on_run: Called with the new AnswerRun before any work starts

        Returns:
            AskResult; ``success`` is False when generation failed, in
            which case only the question is persisted

        Raises:
            ValidationError: Empty or oversized question
            NotFoundError: Unknown conversation, or deleted while in flight
            GenerationError: API key not configured
            RetrievalError: Retrieval failed; nothing is persisted
            StorageError: Persistence failed
        """
        run = AnswerRun(question=question, conversation_id=conversation_id)
        if on_run is not None:
            on_run(run)
        try:
            return await self._run(run)
        except WaliError as e:
            if run.state is not AnswerState.FAILED:
                run.fail(e.kind)
            logger.warning(f"Answer run {run.run_id} failed ({e.kind.value}): {e}")
            raise

    async def _run(self, run: AnswerRun) -> AskResult:
        question = run.question.strip()
        if not question:
            raise ValidationError("Question must not be empty")
        if len(question) > self.config.max_question_chars:
            raise ValidationError(
                f"Question is too long ({len(question)} > {self.config.max_question_chars} characters)"
            )
        if self.provider.requires_api_key and not self.credentials.is_set:
            raise GenerationError("API key is not configured")

        history = await self._resolve_context(run)
        run.advance(AnswerState.CONTEXT_RESOLVED)

        results = await self.retriever.retrieve(question, self.config.top_k)
        run.advance(AnswerState.RETRIEVED)

        messages = assemble_prompt(question, results, history, self.preamble)
        run.advance(AnswerState.PROMPT_ASSEMBLED)

        answer: Optional[str] = None
        error: Optional[str] = None
        try:
            response = await call_with_retry(
                lambda: self.provider.complete(
                    messages,
                    model=self.config.llm_model,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    top_p=self.config.top_p,
                ),
                self.retry_policy,
                on_fatal=GenerationError,
                operation="Answer generation",
                sleep=self.sleep,
            )
            answer = response["content"]
            run.advance(AnswerState.GENERATED)
        except GenerationError as e:
            run.fail(ErrorKind.GENERATION)
            error = str(e)
            logger.error(f"Answer run {run.run_id}: generation failed: {e}")

        refs = source_refs(results) if answer is not None else []
        refs = await self._persist(run, question, answer, refs)

        if answer is None:
            return AskResult(success=False, conversation_id=run.conversation_id, error=error)

        run.advance(AnswerState.COMPLETED)
        logger.info(
            f"Answered question in conversation {run.conversation_id} "
            f"with {len(refs)} sources ({(datetime.now() - run.started_at).total_seconds():.2f}s)"
        )
        return AskResult(
            success=True,
            answer=answer,
            sources=source_document_ids(refs),
            conversation_id=run.conversation_id,
        )

    async def _resolve_context(self, run: AnswerRun) -> list[Message]:
        if run.conversation_id is None:
            # Created at persist time so failed requests leave nothing behind
            run.conversation_id = new_id()
            run.new_conversation = True
            return []
        if await self.conversations.get_conversation(run.conversation_id) is None:
            raise NotFoundError("conversation", run.conversation_id)
        if self.config.history_messages == 0:
            return []
        return await self.conversations.list_messages(run.conversation_id, limit=self.config.history_messages)

    async def _persist(
        self,
        run: AnswerRun,
        question: str,
        answer: Optional[str],
        refs: list[SourceRef],
    ) -> list[SourceRef]:
        async with self._locks.hold(run.conversation_id):
            if run.new_conversation:
                await self.conversations.create_conversation(derive_title(question), run.conversation_id)
            elif await self.conversations.get_conversation(run.conversation_id) is None:
                logger.info(f"Conversation {run.conversation_id} was deleted; discarding answer run {run.run_id}")
                run.fail(ErrorKind.NOT_FOUND)
                raise NotFoundError("conversation", run.conversation_id)

            await self.conversations.append_message(run.conversation_id, Message.user(question))
            if answer is not None:
                refs = await self._live_refs(refs)
                await self.conversations.append_message(run.conversation_id, Message.assistant(answer, refs))
        if answer is not None:
            run.advance(AnswerState.PERSISTED)
        return refs

    async def _live_refs(self, refs: list[SourceRef]) -> list[SourceRef]:
        """Drop references to documents deleted since retrieval."""
        if self.documents is None or not refs:
            return refs
        live = {}
        for document_id in dict.fromkeys(ref.document_id for ref in refs):
            live[document_id] = await self.documents.get(document_id) is not None
        dropped = [document_id for document_id, exists in live.items() if not exists]
        if dropped:
            logger.info(f"Dropping sources of deleted documents: {dropped}")
        return [ref for ref in refs if live[ref.document_id]]

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation once no answer is being persisted to it.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        async with self._locks.hold(conversation_id):
            await self.conversations.delete_conversation(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")
