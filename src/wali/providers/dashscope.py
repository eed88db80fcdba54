"""
DashScope (Qwen) HTTP client and LLM provider.
"""

from typing import Any, Callable

import httpx

from wali.exceptions import GenerationError, TransientUpstreamError, WaliError
from wali.providers.base import LLMProvider
from wali.utils.config import Credentials
from wali.utils.logging import get_logger

logger = get_logger(__name__)

DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com/api/v1"
EMBEDDING_PATH = "/services/embeddings/text-embedding/text-embedding"
GENERATION_PATH = "/services/aigc/text-generation/generation"


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    api_key: str,
    payload: dict[str, Any],
    *,
    fatal: Callable[[str], WaliError],
    label: str,
) -> dict[str, Any]:
    """POST a JSON payload and map transport and status failures to engine errors.

    Timeouts, network failures, 429 and 5xx responses are transient; any
    other error status is converted with ``fatal``.
    """
    try:
        response = await client.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
    except httpx.TimeoutException as e:
        raise TransientUpstreamError(f"{label} request timed out") from e
    except httpx.TransportError as e:
        raise TransientUpstreamError(f"{label} network request failed: {e}") from e

    status = response.status_code
    if status == 429 or status >= 500:
        raise TransientUpstreamError(f"{label} request failed: {status} - {response.text}", status_code=status)
    if response.is_error:
        raise fatal(f"{label} request failed: {status} - {response.text}")

    try:
        return response.json()
    except ValueError as e:
        raise fatal(f"{label} returned invalid JSON") from e


class DashScopeClientMixin:
    """Lazily created ``httpx.AsyncClient`` shared by DashScope components."""

    base_url: str
    timeout: float
    _client: httpx.AsyncClient | None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DashScopeProvider(DashScopeClientMixin, LLMProvider):
    """
    LLM Provider for the DashScope text-generation API.
    """

    requires_api_key = True

    def __init__(
        self,
        credentials: Credentials,
        base_url: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.credentials = credentials
        self.base_url = (base_url or DASHSCOPE_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str = "qwen-turbo",
        temperature: float = 0.7,
        max_tokens: int = 1500,
        **kwargs: Any
    ) -> dict[str, Any]:
        """Get a completion from DashScope."""
        api_key = self.credentials.require()

        parameters: dict[str, Any] = {
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        parameters.update(kwargs)

        result = await post_json(
            self._get_client(),
            self.base_url + GENERATION_PATH,
            api_key,
            {"model": model, "input": {"messages": messages}, "parameters": parameters},
            fatal=GenerationError,
            label="LLM API",
        )

        output = result.get("output") or {}
        # Two response shapes: plain text, or OpenAI-style choices
        text = output.get("text")
        if text is None:
            choices = output.get("choices") or []
            if choices:
                text = (choices[0].get("message") or {}).get("content")
        if not text:
            raise GenerationError("LLM API returned empty content")

        usage = result.get("usage") or {}
        return {
            "content": text,
            "usage": {
                "prompt_tokens": usage.get("input_tokens", 0),
                "completion_tokens": usage.get("output_tokens", 0),
            },
            "finish_reason": output.get("finish_reason") or "stop",
        }

    def get_available_models(self) -> list[str]:
        """Get list of available Qwen models."""
        return [
            "qwen-turbo",
            "qwen-plus",
            "qwen-max",
            "qwen-long",
        ]
