"""Rate-limit aware retry wrapper for remote calls.

Only rate-limit errors are retried, with exponential backoff:
attempt k (k >= 1) waits ``base_delay * 2**(k-1)`` first, so the default
schedule is 1s, 2s. Every other error propagates on the first failure.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from feed.exceptions import RateLimited, RetriesExhausted
from feed.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Word boundaries keep base58 signatures and addresses containing "429" out
_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|too many requests", re.IGNORECASE)


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limited(exc: BaseException) -> bool:
    """Return True if an error signals an HTTP-429-equivalent condition.

    Recognition is structural: a RateLimited instance, a 429 status on the
    error or its ``response``, or a standalone 429 or "too many requests" in
    the message. The ``__cause__`` / ``__context__`` chain is followed so wrapped
    transport errors are still recognised.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, RetriesExhausted):
            return False
        if isinstance(current, RateLimited):
            return True
        if _status_of(current) == 429:
            return True
        if _RATE_LIMIT_PATTERN.search(str(current)):
            return True
        current = current.__cause__ or current.__context__
    return False


class RateLimitedFetcher:
    """Retries a remote call while the upstream keeps rate-limiting it.

    Usage:
        fetcher = RateLimitedFetcher(max_retries=3, base_delay=1.0)
        sigs = await fetcher.call(lambda: client.get_signatures_for_address(pool, 50))
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before ``attempt`` (0-based; attempt 0 never waits)."""
        if attempt <= 0:
            return 0.0
        return self._base_delay * (2 ** (attempt - 1))

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` until it succeeds, fails hard, or the attempts run out.

        Raises:
            RetriesExhausted: every attempt was rate limited.
            Exception: any non-rate-limit error from ``fn``, unchanged.
        """
        last_error: BaseException | None = None

        for attempt in range(self._max_retries):
            if attempt > 0:
                delay = self.delay_for(attempt)
                logger.warning(
                    "rate_limited_retry",
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    delay=delay,
                )
                await self._sleep(delay)

            try:
                return await fn()
            except Exception as e:
                if not is_rate_limited(e):
                    raise
                last_error = e

        logger.error("rate_limit_retries_exhausted", attempts=self._max_retries)
        raise RetriesExhausted(self._max_retries) from last_error
