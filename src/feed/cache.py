"""Expiring key/value store for derived views.

Entries are evicted lazily: an expired entry stays in the backing store
until the next ``get`` for its key. The cache never raises; a failing
backing store is logged and treated as a miss.
"""

import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass
from typing import Any

from feed.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A stored value with its write time and lifetime (seconds)."""

    data: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class TTLCache:
    """Key/value cache with per-entry time-to-live.

    Args:
        default_ttl: Lifetime in seconds used when ``set`` gets no ttl.
        store: Backing mapping. Defaults to a private dict.
        clock: Monotonic seconds source, injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        store: MutableMapping[str, CacheEntry] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._store: MutableMapping[str, CacheEntry] = store if store is not None else {}
        self._clock = clock

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        entry = CacheEntry(
            data=value,
            stored_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        try:
            self._store[key] = entry
        except Exception:
            logger.warning("cache_set_failed", key=key, exc_info=True)

    def get(self, key: str) -> Any | None:
        """Return the live value for ``key``, erasing it if it has expired."""
        try:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._store[key]
                return None
            return entry.data
        except Exception:
            logger.warning("cache_get_failed", key=key, exc_info=True)
            return None

    def is_expired(self, key: str) -> bool:
        """True when ``key`` is absent or past its ttl. Does not evict."""
        try:
            entry = self._store.get(key)
            return entry is None or entry.expired(self._clock())
        except Exception:
            logger.warning("cache_check_failed", key=key, exc_info=True)
            return True

    def remove(self, key: str) -> None:
        try:
            self._store.pop(key, None)
        except Exception:
            logger.warning("cache_remove_failed", key=key, exc_info=True)

    def clear(self) -> None:
        try:
            self._store.clear()
        except Exception:
            logger.warning("cache_clear_failed", exc_info=True)

    def stats(self) -> dict[str, Any]:
        """Keys currently held (expired or not) and their count."""
        try:
            keys = list(self._store.keys())
        except Exception:
            logger.warning("cache_stats_failed", exc_info=True)
            keys = []
        return {"keys": keys, "count": len(keys)}
