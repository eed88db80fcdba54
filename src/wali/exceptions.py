"""
Error kinds raised by the Wali engine.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to every engine error."""
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    RETRIEVAL = "retrieval"
    GENERATION = "generation"
    TRANSIENT_UPSTREAM = "transient_upstream"
    STORAGE = "storage"


class WaliError(Exception):
    """Base exception for engine errors."""

    kind: ErrorKind = ErrorKind.STORAGE

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFoundError(WaliError):
    """Raised when a referenced conversation, document or message is absent."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} '{entity_id}' not found")


class ValidationError(WaliError):
    """Raised for empty questions, oversized uploads or unsupported types."""

    kind = ErrorKind.VALIDATION


class RetrievalError(WaliError):
    """Raised when the index or the embedding subsystem fails."""

    kind = ErrorKind.RETRIEVAL


class GenerationError(WaliError):
    """Raised for non-transient failures of the generative model."""

    kind = ErrorKind.GENERATION


class TransientUpstreamError(WaliError):
    """Raised for retryable upstream failures (timeouts, rate limits)."""

    kind = ErrorKind.TRANSIENT_UPSTREAM

    def __init__(self, message: str = "Upstream request timed out", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(WaliError):
    """Raised when persistence fails."""

    kind = ErrorKind.STORAGE
