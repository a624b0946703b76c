"""Shared test fixtures for the launchpad trade feed."""

import struct

import pytest
from solders.pubkey import Pubkey

from feed.chain.types import AccountKey, ParsedTransaction
from feed.config import (
    AppSettings,
    CacheSettings,
    ChainSettings,
    FetchSettings,
    IngestionSettings,
    PoolSettings,
)
from feed.pools.layout import BOUND_POOL_V1

# Stable, valid-looking addresses for tests
PROGRAM = str(Pubkey.from_bytes(bytes([7]) * 32))
POOL = str(Pubkey.from_bytes(bytes([1]) * 32))
BASE_MINT = str(Pubkey.from_bytes(bytes([2]) * 32))
QUOTE_MINT = "So11111111111111111111111111111111111111112"
USER = str(Pubkey.from_bytes(bytes([3]) * 32))
OTHER_USER = str(Pubkey.from_bytes(bytes([4]) * 32))


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def make_tx(
    signature: str = "sig-1",
    user: str = USER,
    lamport_delta: int = -1_000_000_000,
    logs: list[str] | None = None,
    block_time: int | None = 1_700_000_000,
    err: object = None,
    user_first: bool = True,
) -> ParsedTransaction:
    """Build a parsed transaction with the user's SOL balance moving by ``lamport_delta``.

    Account order is [user, pool, program] (or [pool, user, program] when
    ``user_first`` is False, with the pool also signing).
    """
    pre_user = 10_000_000_000
    if user_first:
        keys = [AccountKey(user, signer=True), AccountKey(POOL), AccountKey(PROGRAM)]
        pre = [pre_user, 5_000_000_000, 1]
        post = [pre_user + lamport_delta, 5_000_000_000 - lamport_delta, 1]
    else:
        keys = [AccountKey(POOL, signer=True), AccountKey(user, signer=True), AccountKey(PROGRAM)]
        pre = [5_000_000_000, pre_user, 1]
        post = [5_000_000_000 - lamport_delta, pre_user + lamport_delta, 1]
    return ParsedTransaction(
        signature=signature,
        account_keys=keys,
        pre_balances=pre,
        post_balances=post,
        log_messages=logs if logs is not None else [],
        err=err,
        block_time=block_time,
    )


def make_pool_data(
    base_mint: bytes = bytes([2]) * 32,
    quote_mint: bytes = bytes(Pubkey.from_string(QUOTE_MINT)),
    base_reserve: int = 1_000_000,
    quote_reserve: int = 0,
    discriminator: bytes = BOUND_POOL_V1.discriminator,
    size: int = BOUND_POOL_V1.size,
) -> bytes:
    """Serialize a pool account head padded (or cut) to ``size`` bytes."""
    head = (
        discriminator
        + struct.pack("<Q", base_reserve)
        + base_mint
        + bytes(32)
        + struct.pack("<Q", quote_reserve)
        + quote_mint
        + bytes(32)
    )
    if size <= len(head):
        return head[:size]
    return head + bytes(size - len(head))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (local RPC, test program, no env)."""
    return AppSettings(
        log_level="DEBUG",
        chain=ChainSettings(rpc_url="http://localhost:8899", program_address=PROGRAM),
        fetch=FetchSettings(max_retries=3, retry_base_delay=1.0, batch_delay=0.2),
        ingestion=IngestionSettings(subjects=[], track_feed=False),
        pools=PoolSettings(check_balances=False),
        cache=CacheSettings(),
    )
