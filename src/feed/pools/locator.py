"""Pool discovery over program-owned accounts.

Each scan enumerates every account the launchpad program owns, keeps the
ones whose size matches the pool layout, decodes their mints and derives
the signer and vault addresses. A scan is authoritative: callers replace
their previous pool set with its result instead of merging.
"""

import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace

from solders.pubkey import Pubkey

from feed.chain.client import ChainClient
from feed.chain.types import ProgramAccount
from feed.exceptions import DecodeMismatch
from feed.fetching.batch import BatchScheduler, SkippedItem
from feed.fetching.retry import RateLimitedFetcher
from feed.logging import get_logger
from feed.models import Pool
from feed.pools.derive import derive_pool_signer, derive_vault
from feed.pools.layout import BOUND_POOL_V1, PoolLayout, decode_pool_record

logger = get_logger(__name__)


@dataclass
class PoolScan:
    """Result of one discovery pass."""

    pools: list[Pool] = field(default_factory=list)
    skipped: list[SkippedItem[str]] = field(default_factory=list)
    accounts_seen: int = 0


class PoolLocator:
    """Finds and decodes pool accounts owned by the launchpad program.

    Args:
        client: Chain data source.
        fetcher: Retry wrapper for every remote call.
        layout: Expected pool record shape.
        verify_discriminator: Also require the layout's discriminator bytes.
        balance_scheduler: When set, base vault balances are read through it
            and ``is_active`` reflects a positive balance. When None,
            ``is_active`` falls back to the record's base reserve counter.
        clock: Returns Unix seconds; stamps ``created_at`` on first sight.
    """

    def __init__(
        self,
        client: ChainClient,
        fetcher: RateLimitedFetcher,
        layout: PoolLayout = BOUND_POOL_V1,
        verify_discriminator: bool = False,
        balance_scheduler: BatchScheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._fetcher = fetcher
        self._layout = layout
        self._verify_discriminator = verify_discriminator
        self._balance_scheduler = balance_scheduler
        self._clock = clock
        self._first_seen: dict[str, int] = {}

    async def scan(self, program_address: str) -> PoolScan:
        """Enumerate, filter and decode every pool the program owns."""
        program = Pubkey.from_string(program_address)
        accounts = await self._fetcher.call(
            lambda: self._client.get_program_accounts(program_address)
        )

        result = PoolScan(accounts_seen=len(accounts))
        sizes = Counter(len(account.data) for account in accounts)
        logger.debug("program_account_sizes", sizes=dict(sorted(sizes.items())))

        decoded: dict[str, Pool] = {}
        for account in accounts:
            if len(account.data) != self._layout.size:
                result.skipped.append(
                    SkippedItem(account.address, f"size {len(account.data)} != {self._layout.size}")
                )
                continue
            try:
                pool = self._decode(account, program)
            except (DecodeMismatch, ValueError) as e:
                logger.debug("pool_decode_skipped", address=account.address, reason=str(e))
                result.skipped.append(SkippedItem(account.address, str(e)))
                continue
            decoded[pool.pool_address] = pool

        pools = list(decoded.values())
        if self._balance_scheduler is not None and pools:
            pools = await self._with_balances(pools)

        result.pools = pools
        logger.info(
            "pool_scan_complete",
            program=program_address,
            accounts=result.accounts_seen,
            pools=len(result.pools),
            skipped=len(result.skipped),
        )
        return result

    def _decode(self, account: ProgramAccount, program: Pubkey) -> Pool:
        record = decode_pool_record(
            account.data, self._layout, verify_discriminator=self._verify_discriminator
        )
        pool_key = Pubkey.from_string(account.address)
        signer = derive_pool_signer(pool_key, program)
        created_at = self._first_seen.setdefault(account.address, int(self._clock() * 1000))

        return Pool(
            pool_address=account.address,
            base_mint=str(record.base_mint),
            quote_mint=str(record.quote_mint),
            pool_signer=str(signer),
            base_vault=str(derive_vault(record.base_mint, signer)),
            quote_vault=str(derive_vault(record.quote_mint, signer)),
            is_active=record.base_reserve > 0,
            created_at=created_at,
            base_reserve=record.base_reserve,
            quote_reserve=record.quote_reserve,
        )

    async def _with_balances(self, pools: Sequence[Pool]) -> list[Pool]:
        """Re-derive ``is_active`` from base vault balances."""

        async def read_balance(pool: Pool) -> tuple[str, bool] | None:
            balance = await self._fetcher.call(
                lambda: self._client.get_token_balance(pool.base_vault)
            )
            if balance is None:
                return None
            return pool.pool_address, balance > 0

        batch = await self._balance_scheduler.run(pools, read_balance)
        for skipped in batch.skipped:
            logger.debug(
                "vault_balance_unavailable",
                pool=skipped.item.pool_address,
                reason=skipped.reason,
            )

        active = dict(batch.succeeded)
        return [
            replace(pool, is_active=active.get(pool.pool_address, False))
            for pool in pools
        ]


def find_pool(pools: Sequence[Pool], key: str) -> Pool | None:
    """Return the pool whose base mint or address equals ``key``."""
    for pool in pools:
        if key in (pool.base_mint, pool.pool_address):
            return pool
    return None
