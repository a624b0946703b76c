"""Tests for IngestionService refresh orchestration.

All tests use a mocked chain client to avoid real RPC calls.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey

from conftest import BASE_MINT, OTHER_USER, POOL, PROGRAM, make_pool_data, make_tx
from feed.cache import TTLCache
from feed.chain.types import ProgramAccount, SignatureInfo
from feed.exceptions import RateLimited, UpstreamUnavailable
from feed.fetching.retry import RateLimitedFetcher
from feed.ingestion import FEED_SUBJECT, IngestionService, snapshot_cache_key
from feed.models import SubjectState, TradeSide
from feed.pools.derive import derive_pool_signer, derive_vault
from feed.pools.locator import PoolLocator
from feed.trades.classifier import TradeClassifier

HOUR_START = 1_699_999_200  # hour-aligned Unix seconds

_SIGNER = derive_pool_signer(Pubkey.from_string(POOL), Pubkey.from_string(PROGRAM))
BASE_VAULT = str(derive_vault(Pubkey.from_string(BASE_MINT), _SIGNER))
NEW_MINT = Pubkey.from_bytes(bytes([9]) * 32)


def _four_trades() -> dict:
    """Two buys and two sells spread over two hourly buckets."""
    return {
        "s1": make_tx("s1", lamport_delta=-1_000_000_000, logs=["Transfer 1000000000"], block_time=HOUR_START + 100),
        "s2": make_tx("s2", lamport_delta=500_000_000, logs=["Transfer 400000000"], block_time=HOUR_START + 200),
        "s3": make_tx("s3", user=OTHER_USER, lamport_delta=-2_000_000_000, logs=["Transfer 1000000000"], block_time=HOUR_START + 3700),
        "s4": make_tx("s4", lamport_delta=1_000_000_000, logs=["Transfer 500000000"], block_time=HOUR_START + 3800),
    }


def _signatures(txs: dict) -> list[SignatureInfo]:
    infos = [SignatureInfo(sig, block_time=tx.block_time) for sig, tx in txs.items()]
    return sorted(infos, key=lambda i: i.block_time, reverse=True)


def _gate_signatures(mock_client: AsyncMock, txs: dict) -> asyncio.Event:
    """Hold signature listing until the returned event is set."""
    gate = asyncio.Event()
    signatures = _signatures(txs)

    async def slow_signatures(address: str, limit: int):
        await gate.wait()
        return signatures

    mock_client.get_signatures_for_address = AsyncMock(side_effect=slow_signatures)
    return gate


async def _until_signatures_requested(mock_client: AsyncMock) -> None:
    while mock_client.get_signatures_for_address.await_count == 0:
        await asyncio.sleep(0)


@pytest.fixture
def txs() -> dict:
    return _four_trades()


@pytest.fixture
def mock_client(txs) -> AsyncMock:
    client = AsyncMock()
    client.get_program_accounts = AsyncMock(
        return_value=[ProgramAccount(POOL, make_pool_data())]
    )
    client.get_signatures_for_address = AsyncMock(return_value=_signatures(txs))
    client.get_parsed_transaction = AsyncMock(side_effect=lambda sig: txs.get(sig))

    def balance(address: str) -> Decimal:
        return Decimal("1000") if address == BASE_VAULT else Decimal("2")

    client.get_token_balance = AsyncMock(side_effect=balance)
    return client


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def uncached_service(mock_settings, mock_client, clock, recording_sleep) -> IngestionService:
    fetcher = RateLimitedFetcher(sleep=recording_sleep)
    return IngestionService(
        settings=mock_settings,
        client=mock_client,
        fetcher=fetcher,
        classifier=TradeClassifier(),
        locator=PoolLocator(mock_client, fetcher, clock=clock),
        cache=None,
        clock=clock,
        sleep=recording_sleep,
    )


@pytest.fixture
def service(mock_settings, mock_client, cache, clock, recording_sleep) -> IngestionService:
    clock.now = HOUR_START + 4000
    fetcher = RateLimitedFetcher(sleep=recording_sleep)
    return IngestionService(
        settings=mock_settings,
        client=mock_client,
        fetcher=fetcher,
        classifier=TradeClassifier(),
        locator=PoolLocator(mock_client, fetcher, clock=clock),
        cache=cache,
        clock=clock,
        sleep=recording_sleep,
    )


# ---------------------------------------------------------------------------
# Pool subjects
# ---------------------------------------------------------------------------


class TestPoolSubjectRefresh:
    @pytest.mark.asyncio
    async def test_end_to_end_snapshot(self, service, mock_client, clock) -> None:
        """Four trades over two hours give four trades and two candles."""
        service.track(POOL)
        snapshot = await service.refresh(POOL)

        assert snapshot.state == SubjectState.READY
        assert snapshot.error is None
        assert not snapshot.is_loading
        assert snapshot.pool.pool_address == POOL
        assert [t.source_id for t in snapshot.trades] == ["s4", "s3", "s2", "s1"]
        assert [t.side for t in snapshot.trades].count(TradeSide.BUY) == 2
        assert [t.side for t in snapshot.trades].count(TradeSide.SELL) == 2

        assert len(snapshot.candles) == 2
        first, second = snapshot.candles
        assert first.bucket_start == HOUR_START * 1000
        assert second.bucket_start == (HOUR_START + 3600) * 1000
        assert first.open == Decimal("0.001")  # 1 SOL for 1000 tokens
        assert first.close == Decimal("0.00125")  # 0.5 SOL for 400 tokens
        assert first.high == Decimal("0.00125")
        assert first.low == Decimal("0.001")
        assert first.volume == Decimal("1.5")
        assert first.trade_count == 2

        # 2 SOL for 1000 tokens, then 1 SOL for 500 tokens
        assert second.open == Decimal("0.002")
        assert second.high == Decimal("0.002")
        assert second.low == Decimal("0.002")
        assert second.close == Decimal("0.002")
        assert second.volume == Decimal("3")
        assert second.trade_count == 2

        assert snapshot.metrics.last_price == Decimal("0.002")
        assert snapshot.metrics.trade_count_24h == 4
        assert snapshot.metrics.unique_traders == 2
        assert snapshot.metrics.spot_price == Decimal("0.002")
        assert snapshot.last_updated == int(clock.now * 1000)

    @pytest.mark.asyncio
    async def test_lookup_by_mint_uses_pool_address(self, service, mock_client) -> None:
        service.track(BASE_MINT)
        snapshot = await service.refresh(BASE_MINT)

        assert snapshot.state == SubjectState.READY
        mock_client.get_signatures_for_address.assert_awaited_once_with(POOL, 1000)

    @pytest.mark.asyncio
    async def test_pool_profile_limits(self, service, mock_client, txs, recording_sleep) -> None:
        many = {f"p{i}": make_tx(f"p{i}", block_time=HOUR_START + i) for i in range(150)}
        txs.clear()
        txs.update(many)
        mock_client.get_signatures_for_address.return_value = _signatures(many)

        snapshot = await service.refresh(POOL)

        assert mock_client.get_parsed_transaction.await_count == 100
        assert recording_sleep.calls == [0.2] * 9  # 10 batches of 10
        assert len(snapshot.trades) == 50  # retention ceiling
        assert sum(c.trade_count for c in snapshot.candles) == 100
        assert snapshot.trades[0].source_id == "p149"

    @pytest.mark.asyncio
    async def test_pools_cached_between_refreshes(self, service, mock_client) -> None:
        await service.refresh(POOL)
        await service.refresh(POOL)
        assert mock_client.get_program_accounts.await_count == 1

    @pytest.mark.asyncio
    async def test_pools_rescanned_after_ttl(self, service, mock_client, clock, mock_settings) -> None:
        await service.refresh(POOL)
        clock.advance(mock_settings.cache.pools_ttl + 1)
        await service.refresh(POOL)
        assert mock_client.get_program_accounts.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_pool_fails(self, service, mock_client) -> None:
        snapshot = await service.refresh("UnknownMint1111111111111111111111111111111")

        assert snapshot.state == SubjectState.FAILED
        assert "Pool not found" in snapshot.error
        assert mock_client.get_program_accounts.await_count == 1

    @pytest.mark.asyncio
    async def test_cached_pool_miss_triggers_one_rescan(self, service, mock_client) -> None:
        mock_client.get_program_accounts.return_value = []
        await service.refresh_pools()
        mock_client.get_program_accounts.return_value = [ProgramAccount(POOL, make_pool_data())]

        snapshot = await service.refresh(POOL)

        assert snapshot.state == SubjectState.READY
        assert mock_client.get_program_accounts.await_count == 2

    @pytest.mark.asyncio
    async def test_spot_price_failure_is_absorbed(self, service, mock_client) -> None:
        mock_client.get_token_balance = AsyncMock(side_effect=UpstreamUnavailable("down"))
        snapshot = await service.refresh(POOL)

        assert snapshot.state == SubjectState.READY
        assert snapshot.metrics.spot_price is None


# ---------------------------------------------------------------------------
# Global feed
# ---------------------------------------------------------------------------


class TestFeedRefresh:
    @pytest.mark.asyncio
    async def test_feed_uses_program_and_short_profile(
        self, service, mock_client, txs, recording_sleep
    ) -> None:
        many = {f"f{i}": make_tx(f"f{i}", block_time=HOUR_START + i) for i in range(40)}
        txs.clear()
        txs.update(many)
        mock_client.get_signatures_for_address.return_value = _signatures(many)

        snapshot = await service.refresh(FEED_SUBJECT)

        mock_client.get_signatures_for_address.assert_awaited_once_with(PROGRAM, 50)
        assert mock_client.get_parsed_transaction.await_count == 20
        assert recording_sleep.calls == [0.2] * 3  # 4 batches of 5
        assert snapshot.pool is None
        assert snapshot.metrics.spot_price is None
        assert len(snapshot.trades) == 20
        mock_client.get_program_accounts.assert_not_awaited()


# ---------------------------------------------------------------------------
# Failure handling and state machine
# ---------------------------------------------------------------------------


class TestRefreshFailures:
    @pytest.mark.asyncio
    async def test_previous_data_kept_on_failure(self, service, mock_client, clock) -> None:
        good = await service.refresh(POOL)
        clock.advance(30)
        mock_client.get_signatures_for_address.side_effect = UpstreamUnavailable("rpc down")

        failed = await service.refresh(POOL)

        assert failed.state == SubjectState.FAILED
        assert failed.error == "rpc down"
        assert not failed.is_loading
        assert failed.trades == good.trades
        assert failed.candles == good.candles
        assert failed.last_updated == good.last_updated

    @pytest.mark.asyncio
    async def test_recovery_clears_error(self, service, mock_client, txs) -> None:
        mock_client.get_signatures_for_address.side_effect = UpstreamUnavailable("rpc down")
        assert (await service.refresh(POOL)).state == SubjectState.FAILED

        mock_client.get_signatures_for_address.side_effect = None
        recovered = await service.refresh(POOL)

        assert recovered.state == SubjectState.READY
        assert recovered.error is None

    @pytest.mark.asyncio
    async def test_signature_listing_exhaustion_fails_refresh(self, service, mock_client, recording_sleep) -> None:
        mock_client.get_signatures_for_address.side_effect = RateLimited("429")
        snapshot = await service.refresh(POOL)

        assert snapshot.state == SubjectState.FAILED
        assert "Max retries exceeded" in snapshot.error
        assert recording_sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_transaction_exhaustion_only_skips_that_trade(self, service, mock_client, txs) -> None:
        def fetch(sig: str):
            if sig == "s2":
                raise RateLimited("429")
            return txs.get(sig)

        mock_client.get_parsed_transaction = AsyncMock(side_effect=fetch)
        snapshot = await service.refresh(POOL)

        assert snapshot.state == SubjectState.READY
        assert [t.source_id for t in snapshot.trades] == ["s4", "s3", "s1"]

    @pytest.mark.asyncio
    async def test_missing_block_time_taken_from_signature(self, service, mock_client, txs) -> None:
        txs["s1"].block_time = None
        snapshot = await service.refresh(POOL)

        trade = next(t for t in snapshot.trades if t.source_id == "s1")
        assert trade.timestamp == (HOUR_START + 100) * 1000

    @pytest.mark.asyncio
    async def test_concurrent_refresh_not_reentered(self, service, mock_client, txs) -> None:
        gate = _gate_signatures(mock_client, txs)

        first = asyncio.create_task(service.refresh(POOL))
        await _until_signatures_requested(mock_client)

        second = await service.refresh(POOL)
        assert second.state == SubjectState.REFRESHING
        assert second.is_loading

        gate.set()
        result = await first

        assert result.state == SubjectState.READY
        assert mock_client.get_signatures_for_address.await_count == 1


# ---------------------------------------------------------------------------
# Subjects, read model and cache
# ---------------------------------------------------------------------------


class TestReadModel:
    def test_track_creates_idle_snapshot(self, service) -> None:
        snapshot = service.track(POOL)
        assert snapshot.state == SubjectState.IDLE
        assert service.get_subjects() == [POOL]
        assert service.track(POOL) is snapshot

    @pytest.mark.asyncio
    async def test_snapshot_published_to_cache(self, service, cache) -> None:
        service.track(POOL)
        snapshot = await service.refresh(POOL)

        assert cache.get(snapshot_cache_key(POOL)) == snapshot
        assert service.get_snapshot(POOL) == snapshot

    @pytest.mark.asyncio
    async def test_memory_fallback_after_cache_expiry(self, service, cache, clock, mock_settings) -> None:
        service.track(POOL)
        snapshot = await service.refresh(POOL)
        clock.advance(mock_settings.cache.snapshot_ttl + 1)

        assert cache.get(snapshot_cache_key(POOL)) is None
        assert service.get_snapshot(POOL) == snapshot

    @pytest.mark.asyncio
    async def test_untrack_drops_snapshot(self, service, cache) -> None:
        service.track(POOL)
        await service.refresh(POOL)
        service.untrack(POOL)

        assert service.get_snapshot(POOL) is None
        assert service.get_snapshots() == []
        assert cache.get(snapshot_cache_key(POOL)) is None

    @pytest.mark.asyncio
    async def test_get_pools_after_scan(self, service) -> None:
        assert service.get_pools() == []
        pools = await service.refresh_pools()
        assert service.get_pools() == pools
        assert pools[0].base_mint == BASE_MINT

    @pytest.mark.asyncio
    async def test_refresh_all_in_tracking_order(self, service, mock_client) -> None:
        service.track(POOL)
        service.track(FEED_SUBJECT)
        snapshots = await service.refresh_all()

        assert [s.subject for s in snapshots] == [POOL, FEED_SUBJECT]
        assert all(s.state == SubjectState.READY for s in snapshots)

    @pytest.mark.asyncio
    async def test_works_without_cache(self, uncached_service, mock_client) -> None:
        uncached_service.track(POOL)
        await uncached_service.refresh(POOL)
        await uncached_service.refresh(POOL)

        assert uncached_service.get_snapshot(POOL).state == SubjectState.READY
        assert mock_client.get_program_accounts.await_count == 1

    @pytest.mark.asyncio
    async def test_pools_rescanned_without_cache_after_ttl(
        self, uncached_service, mock_client, clock, mock_settings
    ) -> None:
        """A pool whose mint and reserves change on chain is picked up again."""
        uncached_service.track(POOL)
        await uncached_service.refresh(POOL)

        mock_client.get_program_accounts.return_value = [
            ProgramAccount(POOL, make_pool_data(base_mint=bytes(NEW_MINT), base_reserve=0))
        ]
        clock.advance(mock_settings.cache.pools_ttl + 1)
        snapshot = await uncached_service.refresh(POOL)

        assert mock_client.get_program_accounts.await_count == 2
        assert snapshot.pool.base_mint == str(NEW_MINT)
        assert not snapshot.pool.is_active
        [pool] = uncached_service.get_pools()
        assert pool.base_mint == str(NEW_MINT)

    @pytest.mark.asyncio
    async def test_untrack_during_refresh_discards_result(
        self, service, mock_client, txs, cache
    ) -> None:
        service.track(POOL)
        gate = _gate_signatures(mock_client, txs)

        pending = asyncio.create_task(service.refresh(POOL))
        await _until_signatures_requested(mock_client)
        service.untrack(POOL)
        gate.set()
        result = await pending

        assert result.state == SubjectState.READY
        assert service.get_snapshot(POOL) is None
        assert service.get_snapshots() == []
        assert cache.get(snapshot_cache_key(POOL)) is None


# ---------------------------------------------------------------------------
# Periodic loop
# ---------------------------------------------------------------------------


class TestRefreshLoop:
    @pytest.mark.asyncio
    async def test_start_refreshes_then_stop(self, mock_settings, mock_client, clock) -> None:
        fetcher = RateLimitedFetcher()
        service = IngestionService(
            settings=mock_settings,
            client=mock_client,
            fetcher=fetcher,
            classifier=TradeClassifier(),
            locator=PoolLocator(mock_client, fetcher, clock=clock),
            cache=TTLCache(clock=clock),
            clock=clock,
        )
        service.track(POOL)

        await service.start()
        assert service.is_running
        for _ in range(100):
            if service.get_snapshot(POOL).state == SubjectState.READY:
                break
            await asyncio.sleep(0)

        assert service.get_snapshot(POOL).state == SubjectState.READY
        await service.stop()
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self, service) -> None:
        await service.start()
        first_task = service._task
        await service.start()
        assert service._task is first_task
        await service.stop()

    @pytest.mark.asyncio
    async def test_stop_mid_refresh_clears_loading(self, service, mock_client, txs, cache) -> None:
        service.track(POOL)
        _gate_signatures(mock_client, txs)

        await service.start()
        await _until_signatures_requested(mock_client)
        assert service.get_snapshot(POOL).is_loading

        await service.stop()

        for snapshot in (service.get_snapshot(POOL), cache.get(snapshot_cache_key(POOL))):
            assert snapshot.state == SubjectState.IDLE
            assert not snapshot.is_loading
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_feed_only_loop_skips_pool_scan(self, mock_settings, mock_client, clock) -> None:
        fetcher = RateLimitedFetcher()
        service = IngestionService(
            settings=mock_settings,
            client=mock_client,
            fetcher=fetcher,
            classifier=TradeClassifier(),
            locator=PoolLocator(mock_client, fetcher, clock=clock),
            cache=TTLCache(clock=clock),
            clock=clock,
        )
        service.track(FEED_SUBJECT)

        await service.start()
        for _ in range(100):
            if service.get_snapshot(FEED_SUBJECT).state == SubjectState.READY:
                break
            await asyncio.sleep(0)
        await service.stop()

        assert service.get_snapshot(FEED_SUBJECT).state == SubjectState.READY
        mock_client.get_program_accounts.assert_not_awaited()
