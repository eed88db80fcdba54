"""Embedding model implementations."""

import asyncio
import hashlib
import logging
import math
import re
from typing import Optional

import httpx

from wali.exceptions import RetrievalError
from wali.providers.dashscope import DASHSCOPE_BASE_URL, EMBEDDING_PATH, DashScopeClientMixin, post_json
from wali.providers.openai import OpenAIClientMixin, map_openai_error
from wali.utils.config import Credentials

from .base import BaseEmbedding

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


class FakeEmbedding(BaseEmbedding):
    """Deterministic offline embedding based on signed feature hashing.

    Texts that share words get similar vectors, which is enough for tests
    and offline demos. Not a semantic model.
    """

    def __init__(self, dimension: int = 256, seed: int = 42):
        self._dimension = dimension
        self.seed = seed

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_id(self) -> str:
        return f"fake-hash-{self._dimension}-{self.seed}"

    def _hash_text(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.sha256(f"{self.seed}:{token}".encode()).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._hash_text(text)


class DashScopeEmbedding(DashScopeClientMixin, BaseEmbedding):
    """DashScope text-embedding model over HTTP."""

    requires_api_key = True

    MODEL_DIMENSIONS = {
        "text-embedding-v1": 1536,
        "text-embedding-v2": 1536,
        "text-embedding-v3": 1024,
    }

    def __init__(
        self,
        credentials: Credentials,
        model: str = "text-embedding-v2",
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.credentials = credentials
        self.model = model
        self.base_url = (base_url or DASHSCOPE_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 1536)

    @property
    def model_id(self) -> str:
        return f"dashscope/{self.model}"

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        result = await post_json(
            self._get_client(),
            self.base_url + EMBEDDING_PATH,
            self.credentials.require(),
            {"model": self.model, "input": {"texts": texts}},
            fatal=RetrievalError,
            label="Embedding API",
        )
        items = (result.get("output") or {}).get("embeddings")
        if not isinstance(items, list) or len(items) != len(texts):
            raise RetrievalError("Embedding API returned an unexpected number of vectors")
        # Results carry text_index; do not rely on response order
        ordered: list[list[float]] = [[] for _ in texts]
        for position, item in enumerate(items):
            index = item.get("text_index", position)
            if not isinstance(index, int) or not 0 <= index < len(texts):
                raise RetrievalError(f"Embedding API returned invalid text_index {index!r}")
            ordered[index] = item.get("embedding") or []
        return ordered

    async def embed_query(self, text: str) -> list[float]:
        embeddings = await self.embed_documents([text])
        if not embeddings[0]:
            raise RetrievalError("Embedding API returned an empty vector")
        return embeddings[0]


class OpenAIEmbedding(OpenAIClientMixin, BaseEmbedding):
    """OpenAI embedding model."""

    requires_api_key = True

    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, credentials: Credentials, model: str = "text-embedding-3-small", base_url: Optional[str] = None):
        self.credentials = credentials
        self.model = model
        self.base_url = base_url
        self._client = None
        self._client_key = None

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 1536)

    @property
    def model_id(self) -> str:
        return f"openai/{self.model}"

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        import openai

        if not texts:
            return []
        client = self._get_client()
        try:
            response = await client.embeddings.create(model=self.model, input=texts)
        except openai.OpenAIError as e:
            raise map_openai_error(e, RetrievalError) from e
        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    async def embed_query(self, text: str) -> list[float]:
        embeddings = await self.embed_documents([text])
        return embeddings[0]


class LocalEmbedding(BaseEmbedding):
    """Local embedding model using sentence-transformers."""

    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "paraphrase-multilingual-MiniLM-L12-v2": 384,
    }

    def __init__(self, model_name: str = "paraphrase-multilingual-MiniLM-L12-v2", device: Optional[str] = None, normalize: bool = True):
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self._model = None

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model_name, 384)

    @property
    def model_id(self) -> str:
        return f"sentence-transformers/{self.model_name}"

    def _get_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
                self._model = SentenceTransformer(self.model_name, device=self.device)
            except ImportError:
                raise ImportError("Local embedding requires 'sentence-transformers'. pip install sentence-transformers")
        return self._model

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        model = self._get_model()
        loop = asyncio.get_running_loop()
        try:
            embeddings = await loop.run_in_executor(
                None, lambda: model.encode(texts, normalize_embeddings=self.normalize, convert_to_numpy=True)
            )
        except Exception as e:
            raise RetrievalError(f"Local embedding failed: {e}") from e
        return embeddings.tolist()

    async def embed_query(self, text: str) -> list[float]:
        embeddings = await self.embed_documents([text])
        return embeddings[0]
