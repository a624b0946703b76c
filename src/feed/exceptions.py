"""Custom exceptions for the launchpad trade feed.

Every error the ingestion pipeline raises or classifies lives here so the
fetching, decoding and orchestration layers can share them without
circular imports.
"""


class FeedError(Exception):
    """Base exception for all feed errors."""


class RateLimited(FeedError):
    """Raised when the upstream RPC answers with a too-many-requests signal."""


class RetriesExhausted(FeedError):
    """Raised when a rate-limited call still fails after every allowed attempt."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Max retries exceeded after {attempts} attempts")
        self.attempts = attempts


class DecodeMismatch(FeedError):
    """Raised when account bytes do not match the expected pool layout."""


class PoolNotFound(FeedError):
    """Raised when no pool is known for a requested subject."""

    def __init__(self, subject: str) -> None:
        super().__init__(f"Pool not found for {subject}")
        self.subject = subject


class UpstreamUnavailable(FeedError):
    """Raised when the RPC endpoint cannot be reached."""
