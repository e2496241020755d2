"""Reusable retry policy for remote reads and persistence writes."""

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from services.indexer.src.indexer.errors import ConfigurationError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Configuration errors never succeed on a second attempt."""
    return not isinstance(error, ConfigurationError)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff and optional jitter.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait after the first failure
        max_delay: Upper bound for a single wait
        backoff: Multiplier applied to the delay after each failure
        jitter: Up to this many seconds are added to every wait
        timeout: Per-attempt timeout in seconds (async only)
        retryable: Predicate deciding whether an error is worth another attempt
    """

    max_attempts: int = 2
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff: float = 2.0
    jitter: float = 0.0
    timeout: float | None = None
    retryable: Callable[[BaseException], bool] = is_retryable

    def delay_for(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * self.backoff ** (attempt - 1))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def with_options(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)`` until it succeeds or attempts run out."""
        attempt = 0
        while True:
            attempt += 1
            try:
                if self.timeout is not None:
                    return await asyncio.wait_for(fn(*args, **kwargs), timeout=self.timeout)
                return await fn(*args, **kwargs)
            except Exception as e:
                if not self.retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(attempt, e) from e
                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} of {_name(fn)} failed: {e!r}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    async def run_in_thread(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run blocking ``fn`` (e.g. a database write) in a worker thread under this policy.

        Waits between attempts use ``asyncio.sleep``, so other chains keep running.
        """
        async def attempt() -> T:
            return await asyncio.to_thread(fn, *args, **kwargs)

        attempt.__qualname__ = _name(fn)
        return await self.run(attempt)


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


LATEST_BLOCK_POLICY = RetryPolicy(max_attempts=2, base_delay=1.0, timeout=30.0)
REMOTE_READ_POLICY = RetryPolicy(max_attempts=2, base_delay=1.0, max_delay=2.0, timeout=15.0)
GET_LOGS_POLICY = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=10.0, timeout=30.0)
SNAPSHOT_READ_POLICY = RetryPolicy(max_attempts=2, base_delay=2.0, timeout=120.0)
EVENT_WINDOW_POLICY = RetryPolicy(max_attempts=2, base_delay=2.0, jitter=0.5)
PERSISTENCE_POLICY = RetryPolicy(max_attempts=2, base_delay=2.0)
