"""
Test configuration and fixtures.
"""

import asyncio
from typing import Any, Optional

import pytest

from wali.backend import WaliBackend
from wali.exceptions import RetrievalError
from wali.providers.base import LLMProvider
from wali.rag import FakeEmbedding
from wali.utils.config import WaliConfig


class ScriptedProvider(LLMProvider):
    """Generative model stand-in that answers from a script.

    ``errors`` are raised by successive calls before any reply is given;
    ``delays`` are slept by successive calls. Without a scripted reply the
    answer echoes the question.
    """

    def __init__(
        self,
        replies: Optional[list[str]] = None,
        errors: Optional[list[Exception]] = None,
        delays: Optional[list[float]] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.replies = list(replies or [])
        self.errors = list(errors or [])
        self.delays = list(delays or [])
        self.gate = gate
        self.calls: list[list[dict[str, Any]]] = []

    async def complete(self, messages, *, model, temperature=0.7, max_tokens=1500, **kwargs):
        self.calls.append(messages)
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        if self.replies:
            content = self.replies.pop(0)
        else:
            question = messages[-1]["content"].rsplit("Question: ", 1)[-1]
            content = f"Answer to: {question}"
        return {"content": content, "usage": {"prompt_tokens": 0, "completion_tokens": 0}, "finish_reason": "stop"}

    def get_available_models(self) -> list[str]:
        return ["scripted"]


class PoisonedEmbedding(FakeEmbedding):
    """Fake embedding that rejects any batch containing a marker word."""

    def __init__(self, marker: str = "POISON", **kwargs):
        super().__init__(**kwargs)
        self.marker = marker
        self.batches: list[int] = []

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(len(texts))
        if any(self.marker in text for text in texts):
            raise RetrievalError("Embedding API rejected the input")
        return await super().embed_documents(texts)


class KeyedEmbedding(FakeEmbedding):
    """Fake embedding that claims to need an API key."""

    requires_api_key = True


@pytest.fixture
def config(tmp_path):
    """Engine configuration rooted in a temp directory, without retry delays."""
    return WaliConfig(
        data_dir=str(tmp_path / "data"),
        embedding_provider="fake",
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def make_backend(config, provider):
    """Factory for SQLite-backed backends sharing one data directory."""

    async def factory(**kwargs) -> WaliBackend:
        kwargs.setdefault("embedding", FakeEmbedding())
        kwargs.setdefault("provider", provider)
        return await WaliBackend.create(kwargs.pop("config", config), **kwargs)

    return factory
