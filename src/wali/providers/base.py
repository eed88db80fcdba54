"""
Base LLM Provider interface.
"""

from abc import ABC, abstractmethod
from typing import Any


class LLMProvider(ABC):
    """
    Abstract base class for generative model providers.

    Implementations raise ``TransientUpstreamError`` for retryable failures
    (timeouts, rate limits, server errors) and ``GenerationError`` for
    everything that retrying cannot fix.
    """

    requires_api_key: bool = False

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1500,
        **kwargs: Any
    ) -> dict[str, Any]:
        """
        Get a completion from the LLM.

        Args:
            messages: List of messages in API format
            model: Model identifier
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific options

        Returns:
            Dictionary with 'content', 'usage' and 'finish_reason'
        """
        pass

    @abstractmethod
    def get_available_models(self) -> list[str]:
        """Get list of available models."""
        pass

    def count_tokens(self, text: str) -> int:
        """Estimate token count for text (simple implementation)."""
        # Simple estimation: ~4 characters per token
        return len(text) // 4
