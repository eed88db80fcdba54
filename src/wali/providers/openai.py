"""
OpenAI LLM Provider.
"""

from typing import Any, Callable

from wali.exceptions import GenerationError, TransientUpstreamError, WaliError
from wali.providers.base import LLMProvider
from wali.utils.config import Credentials


def map_openai_error(error: Exception, fatal: Callable[[str], WaliError]) -> WaliError:
    """Translate an ``openai`` SDK exception into an engine error."""
    import openai

    if isinstance(error, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        status = getattr(error, "status_code", None)
        return TransientUpstreamError(f"OpenAI request failed: {error}", status_code=status)
    return fatal(f"OpenAI request failed: {error}")


class OpenAIClientMixin:
    """Creates the ``AsyncOpenAI`` client for the current API key."""

    credentials: Credentials
    base_url: str | None
    _client: Any
    _client_key: str | None

    def _get_client(self):
        """Get or create OpenAI client."""
        api_key = self.credentials.require()
        if self._client is None or self._client_key != api_key:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )

            # Retries are handled by the orchestrator's retry policy
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)
            self._client_key = api_key
        return self._client


class OpenAIProvider(OpenAIClientMixin, LLMProvider):
    """
    LLM Provider for OpenAI API.
    """

    requires_api_key = True

    def __init__(
        self,
        credentials: Credentials,
        base_url: str | None = None,
    ):
        self.credentials = credentials
        self.base_url = base_url
        self._client = None
        self._client_key = None

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 1500,
        **kwargs: Any
    ) -> dict[str, Any]:
        """Get a completion from OpenAI."""
        import openai

        client = self._get_client()

        params: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        params.update(kwargs)

        try:
            response = await client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            raise map_openai_error(e, GenerationError) from e

        choice = response.choices[0]
        if not choice.message.content:
            raise GenerationError("OpenAI returned empty content")

        return {
            "content": choice.message.content,
            "usage": {
                "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
                "completion_tokens": response.usage.completion_tokens if response.usage else 0,
            },
            "finish_reason": choice.finish_reason or "stop",
        }

    def get_available_models(self) -> list[str]:
        """Get list of available OpenAI models."""
        return [
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4-turbo",
            "gpt-3.5-turbo",
        ]
