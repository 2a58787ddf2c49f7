"""Retry policy with exponential backoff and jitter.

Used for object store uploads and for re-establishing the gateway's broker
subscription.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel, Field

from shipwright.core.exceptions import ShipwrightError, StorageError

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class RetryPolicy(BaseModel):
    """Configurable retry policy with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        backoff_base: Base delay in seconds for exponential backoff.
        backoff_max: Maximum delay in seconds (caps the exponential growth).
        jitter: If ``True``, the delay is drawn uniformly from ``[0, delay]``.
        retryable_exceptions: Exception types retried when they do not carry
            their own ``is_retryable`` verdict.
    """

    max_retries: int = Field(default=3, ge=0, le=50)
    backoff_base: float = Field(default=0.5, ge=0.0)
    backoff_max: float = Field(default=30.0, ge=0.0)
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (StorageError, TimeoutError)

    model_config = {"arbitrary_types_allowed": True}

    def is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, ShipwrightError):
            return exc.is_retryable
        return isinstance(exc, self.retryable_exceptions)

    def compute_delay(self, attempt: int) -> float:
        """Backoff delay before retry number *attempt* (0-indexed)."""
        delay: float = min(self.backoff_base * (2 ** attempt), self.backoff_max)
        if self.jitter:
            delay = random.uniform(0, delay)  # noqa: S311
        return delay

    async def execute(
        self,
        fn: Callable[..., Awaitable[_T]],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Call ``await fn(*args, **kwargs)``, retrying retryable failures.

        Raises:
            Exception: The last exception once retries are exhausted, or the
                first non-retryable one immediately.
        """
        attempt = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not self.is_retryable(exc) or attempt >= self.max_retries:
                    raise
                delay = self.compute_delay(attempt)
                attempt += 1
                logger.info(
                    "retry_scheduled",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                await asyncio.sleep(delay)
