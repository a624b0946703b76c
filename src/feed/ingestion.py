"""Ingestion service -- turns raw chain activity into per-subject snapshots.

Each refresh of a subject runs one full rescan:
  1. RESOLVE: pool subjects look up their pool (cached scan, rescan on miss)
  2. LIST: read recent transaction signatures for the pool (or the program)
  3. FETCH: walk the newest signatures in delayed batches, classify each
  4. AGGREGATE: sort trades newest first, rebuild candles and metrics
  5. PUBLISH: replace the subject's snapshot in memory and in the cache

Subjects move IDLE -> REFRESHING -> READY | FAILED. A refresh requested
while one is in flight for the same subject returns the current snapshot.
A failed refresh keeps the previous trades, candles and metrics and only
records the error.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

import structlog

from feed.cache import TTLCache
from feed.chain.client import ChainClient
from feed.chain.types import SignatureInfo
from feed.config import AppSettings
from feed.exceptions import PoolNotFound
from feed.fetching.batch import BatchScheduler
from feed.fetching.retry import RateLimitedFetcher
from feed.logging import get_logger
from feed.models import Pool, Snapshot, SubjectState, Trade
from feed.pools.locator import PoolLocator, find_pool
from feed.trades.candles import aggregate_candles
from feed.trades.classifier import TradeClassifier, sort_newest_first
from feed.trades.metrics import compute_market_metrics

logger = get_logger(__name__)

#: Subject key of the program-wide activity feed.
FEED_SUBJECT = "feed"

POOLS_CACHE_KEY = "pools"


def snapshot_cache_key(subject: str) -> str:
    return f"snapshot:{subject}"


class RefreshStrategy(str, Enum):
    """How a refresh rebuilds a subject's trade set."""

    FULL_RESCAN = "full_rescan"


@dataclass(frozen=True)
class RetrievalProfile:
    """Per-subject limits on how much history one refresh reads."""

    signature_limit: int  # signatures requested from the RPC
    scan_limit: int  # newest signatures actually fetched and classified
    batch_size: int


class IngestionService:
    """Orchestrates pool discovery, trade fetching and aggregation.

    Args:
        settings: Application settings (chain, fetch, ingestion, cache groups).
        client: Chain data source.
        fetcher: Retry wrapper applied to every remote call.
        classifier: Transaction to Trade decoder.
        locator: Pool discovery.
        cache: Snapshot and pool cache. None disables caching.
        clock: Returns Unix seconds.
        sleep: Awaitable sleep used between batches and refresh ticks.
    """

    def __init__(
        self,
        settings: AppSettings,
        client: ChainClient,
        fetcher: RateLimitedFetcher,
        classifier: TradeClassifier,
        locator: PoolLocator,
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = client
        self._fetcher = fetcher
        self._classifier = classifier
        self._locator = locator
        self._cache = cache
        self._clock = clock
        self._sleep = sleep

        ingestion = settings.ingestion
        self._program_address = settings.chain.program_address
        self._strategy = RefreshStrategy.FULL_RESCAN
        self._pool_profile = RetrievalProfile(
            signature_limit=ingestion.pool_signature_limit,
            scan_limit=ingestion.pool_scan_limit,
            batch_size=ingestion.pool_batch_size,
        )
        self._feed_profile = RetrievalProfile(
            signature_limit=ingestion.feed_signature_limit,
            scan_limit=ingestion.feed_scan_limit,
            batch_size=ingestion.feed_batch_size,
        )

        self._subjects: dict[str, None] = {}
        self._snapshots: dict[str, Snapshot] = {}
        self._refreshing: set[str] = set()
        self._pools: list[Pool] | None = None
        self._pools_scanned_at: float | None = None
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------

    def track(self, subject: str) -> Snapshot:
        """Start tracking a subject. Idempotent."""
        if subject not in self._subjects:
            self._subjects[subject] = None
            self._snapshots.setdefault(subject, Snapshot(subject=subject))
            logger.info("subject_tracked", subject=subject)
        return self._snapshots[subject]

    def untrack(self, subject: str) -> None:
        self._subjects.pop(subject, None)
        self._snapshots.pop(subject, None)
        if self._cache is not None:
            self._cache.remove(snapshot_cache_key(subject))
        logger.info("subject_untracked", subject=subject)

    def is_tracked(self, subject: str) -> bool:
        return subject in self._subjects

    def get_subjects(self) -> list[str]:
        return list(self._subjects)

    def profile_for(self, subject: str) -> RetrievalProfile:
        return self._feed_profile if subject == FEED_SUBJECT else self._pool_profile

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def get_snapshot(self, subject: str) -> Snapshot | None:
        """Return the latest snapshot, preferring the cached copy."""
        if self._cache is not None:
            cached = self._cache.get(snapshot_cache_key(subject))
            if cached is not None:
                return cached
        return self._snapshots.get(subject)

    def get_snapshots(self) -> list[Snapshot]:
        """Snapshots of every tracked subject, in tracking order."""
        return [
            snapshot
            for subject in self._subjects
            if (snapshot := self.get_snapshot(subject)) is not None
        ]

    def get_pools(self) -> list[Pool]:
        """Pools from the last scan (empty before the first one)."""
        if self._cache is not None:
            cached = self._cache.get(POOLS_CACHE_KEY)
            if cached is not None:
                return cached
        return list(self._pools or [])

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_pools(self) -> list[Pool]:
        """Rescan program accounts and replace the known pool set."""
        scan = await self._locator.scan(self._program_address)
        self._pools = scan.pools
        self._pools_scanned_at = self._clock()
        if self._cache is not None:
            self._cache.set(POOLS_CACHE_KEY, scan.pools, ttl=self._settings.cache.pools_ttl)
        return scan.pools

    async def refresh(self, subject: str) -> Snapshot:
        """Rebuild one subject's snapshot. Never raises on upstream failure.

        A subject untracked while its refresh is in flight keeps no snapshot:
        the result is returned to the caller but not published. Cancellation
        restores the pre-refresh snapshot with ``is_loading`` cleared.
        """
        if subject in self._refreshing:
            logger.debug("refresh_already_in_flight", subject=subject)
            return self._current(subject)

        self._refreshing.add(subject)
        was_tracked = self.is_tracked(subject)
        previous = self._current(subject)
        self._publish(replace(previous, state=SubjectState.REFRESHING, is_loading=True))

        try:
            with structlog.contextvars.bound_contextvars(subject=subject):
                snapshot = await self._rebuild(subject, previous)
        except asyncio.CancelledError:
            logger.info("subject_refresh_cancelled", subject=subject)
            if self._still_wanted(subject, was_tracked):
                self._publish(replace(previous, is_loading=False))
            raise
        except Exception as e:
            logger.warning(
                "subject_refresh_failed",
                subject=subject,
                error=str(e),
                exc_info=True,
            )
            snapshot = replace(
                previous,
                state=SubjectState.FAILED,
                is_loading=False,
                error=str(e),
            )
        finally:
            self._refreshing.discard(subject)

        if self._still_wanted(subject, was_tracked):
            self._publish(snapshot)
        else:
            logger.info("refresh_result_discarded", subject=subject)
        return snapshot

    async def refresh_all(self) -> list[Snapshot]:
        """Refresh every tracked subject sequentially."""
        results = []
        for subject in list(self._subjects):
            results.append(await self.refresh(subject))
        return results

    async def _rebuild(self, subject: str, previous: Snapshot) -> Snapshot:
        if subject == FEED_SUBJECT:
            pool = None
            address = self._program_address
        else:
            pool = await self._resolve_pool(subject)
            address = pool.pool_address

        profile = self.profile_for(subject)
        signatures = await self._fetcher.call(
            lambda: self._client.get_signatures_for_address(address, profile.signature_limit)
        )

        async def fetch_trade(info: SignatureInfo) -> Trade | None:
            tx = await self._fetcher.call(
                lambda: self._client.get_parsed_transaction(info.signature)
            )
            if tx is None:
                return None
            if tx.block_time is None and info.block_time is not None:
                tx = replace(tx, block_time=info.block_time)
            return self._classifier.classify(tx, address, self._program_address)

        scheduler = BatchScheduler(
            batch_size=profile.batch_size,
            batch_delay=self._settings.fetch.batch_delay,
            max_items=profile.scan_limit,
            sleep=self._sleep,
        )
        batch = await scheduler.run(signatures, fetch_trade)
        for skipped in batch.skipped:
            logger.debug(
                "transaction_skipped",
                signature=skipped.item.signature,
                reason=skipped.reason,
            )

        trades = sort_newest_first(batch.succeeded)
        width_ms = self._settings.ingestion.candle_width_seconds * 1000
        candles = aggregate_candles(trades, width_ms)
        spot_price = await self._spot_price(pool) if pool is not None else None
        now_ms = int(self._clock() * 1000)
        metrics = compute_market_metrics(trades, now_ms, spot_price=spot_price)

        logger.info(
            "subject_refreshed",
            signatures=len(signatures),
            scanned=min(len(signatures), profile.scan_limit),
            trades=len(trades),
            candles=len(candles),
            skipped=len(batch.skipped),
        )
        return Snapshot(
            subject=subject,
            state=SubjectState.READY,
            pool=pool,
            trades=tuple(trades[: self._settings.ingestion.max_trades]),
            candles=tuple(candles),
            metrics=metrics,
            is_loading=False,
            error=None,
            last_updated=now_ms,
        )

    async def _resolve_pool(self, subject: str) -> Pool:
        pools, fresh = await self._known_pools()
        pool = find_pool(pools, subject)
        if pool is None and not fresh:
            pool = find_pool(await self.refresh_pools(), subject)
        if pool is None:
            raise PoolNotFound(subject)
        return pool

    async def _known_pools(self) -> tuple[list[Pool], bool]:
        """Return (pools, fresh), scanning when nothing usable is held.

        Without a cache the in-memory set is reused for ``pools_ttl`` seconds,
        then rescanned like an expired cache entry.
        """
        if self._cache is not None:
            cached = self._cache.get(POOLS_CACHE_KEY)
            if cached is not None:
                return cached, False
        elif self._pools is not None and not self._pools_stale():
            return self._pools, False
        return await self.refresh_pools(), True

    def _pools_stale(self) -> bool:
        if self._pools_scanned_at is None:
            return True
        return self._clock() - self._pools_scanned_at > self._settings.cache.pools_ttl

    async def _spot_price(self, pool: Pool) -> Decimal | None:
        """Quote vault balance over base vault balance, when both are readable."""
        try:
            base = await self._fetcher.call(
                lambda: self._client.get_token_balance(pool.base_vault)
            )
            quote = await self._fetcher.call(
                lambda: self._client.get_token_balance(pool.quote_vault)
            )
        except Exception as e:
            logger.debug("spot_price_unavailable", pool=pool.pool_address, error=str(e))
            return None
        if not base or quote is None:
            return None
        return quote / base

    def _still_wanted(self, subject: str, was_tracked: bool) -> bool:
        # False once a subject tracked at refresh start has been untracked
        return self.is_tracked(subject) or not was_tracked

    def _current(self, subject: str) -> Snapshot:
        return self._snapshots.get(subject) or Snapshot(subject=subject)

    def _publish(self, snapshot: Snapshot) -> None:
        self._snapshots[snapshot.subject] = snapshot
        if self._cache is not None:
            self._cache.set(
                snapshot_cache_key(snapshot.subject),
                snapshot,
                ttl=self._settings.cache.snapshot_ttl,
            )

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Begin refreshing tracked subjects in the background."""
        if self._running:
            logger.warning("ingestion_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(
            "ingestion_started",
            refresh_interval=self._settings.ingestion.refresh_interval,
            subjects=len(self._subjects),
            strategy=self._strategy.value,
        )

    async def stop(self) -> None:
        """Stop the refresh loop gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ingestion_stopped")

    def _tracks_pool_subjects(self) -> bool:
        return any(subject != FEED_SUBJECT for subject in self._subjects)

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                if self._tracks_pool_subjects():
                    await self._known_pools()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("pool_scan_error", exc_info=True)

            await self.refresh_all()

            if self._running:
                await self._sleep(self._settings.ingestion.refresh_interval)
