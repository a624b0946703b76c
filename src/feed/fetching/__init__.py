"""Remote call plumbing -- rate-limit retry and batched fan-out."""

from feed.fetching.batch import BatchResult, BatchScheduler, SkippedItem
from feed.fetching.retry import RateLimitedFetcher, is_rate_limited

__all__ = [
    "BatchResult",
    "BatchScheduler",
    "RateLimitedFetcher",
    "SkippedItem",
    "is_rate_limited",
]
