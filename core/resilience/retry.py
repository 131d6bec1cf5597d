"""
Geeta Stores Retry Policy: Exponential Backoff for Transient Failures.

Only ``TransientError`` is retried. Validation and not-found errors are
caller mistakes and surface immediately.
"""
from __future__ import annotations
from typing import Awaitable, Callable, TypeVar
import asyncio
import logging

from core.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded retry with exponential backoff."""

    def __init__(
        self,
        attempts: int = 3,
        backoff_base: float = 0.2,
        backoff_max: float = 2.0,
    ):
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()``, retrying on TransientError."""
        for attempt in range(1, self.attempts + 1):
            try:
                return await func()
            except TransientError as exc:
                if attempt >= self.attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "transient failure (attempt %d/%d), retrying in %.2fs: %s",
                    attempt, self.attempts, delay, exc.message,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
