"""Bounded retry with exponential backoff for upstream model calls."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from wali.exceptions import TransientUpstreamError, WaliError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_error(error: BaseException) -> ErrorClass:
    """Decide whether a failed upstream call may be retried."""
    if isinstance(error, (TransientUpstreamError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one kind of upstream call.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt in seconds
        max_delay: Upper bound for any single delay
        timeout: Per-attempt timeout in seconds (None disables it)
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    timeout: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_fatal: Callable[[str], WaliError],
    operation: str = "upstream call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``call`` until it succeeds, fails fatally or the attempt budget runs out.

    Transient failures (see ``classify_error``) are retried with backoff.
    Engine errors that are not transient propagate unchanged; any other
    exception is wrapped with ``on_fatal``. When the budget is exhausted the
    last transient failure is converted with ``on_fatal`` as well.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(call(), timeout=policy.timeout)
            return await call()
        except Exception as e:
            if classify_error(e) is ErrorClass.FATAL:
                if isinstance(e, WaliError):
                    raise
                raise on_fatal(f"{operation} failed: {e}") from e
            last_error = e
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{operation} attempt {attempt}/{policy.max_attempts} failed "
                    f"({e or type(e).__name__}); retrying in {delay:.2f}s"
                )
                await sleep(delay)

    detail = str(last_error) or type(last_error).__name__
    logger.error(f"{operation} failed after {policy.max_attempts} attempts: {detail}")
    raise on_fatal(f"{operation} failed after {policy.max_attempts} attempts: {detail}") from last_error
