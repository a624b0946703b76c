"""Shared data models for the launchpad trade feed.

CRITICAL: All monetary values use Decimal. Never use float for prices, amounts, or volumes.
Timestamps are integer milliseconds since the Unix epoch.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class TradeSide(str, Enum):
    """Trade direction from the user's point of view."""

    BUY = "buy"
    SELL = "sell"


class SubjectState(str, Enum):
    """Refresh lifecycle of a tracked subject."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class Trade:
    """A single classified buy/sell derived from one transaction.

    ``price`` is quote per base and always equals
    ``quote_amount / base_amount``. Zero-valued trades are never valid.
    """

    timestamp: int  # Unix milliseconds
    price: Decimal
    base_amount: Decimal
    quote_amount: Decimal
    side: TradeSide
    source_id: str  # transaction signature
    counterparty: str
    base_amount_estimated: bool = False

    def __post_init__(self) -> None:
        if self.price <= 0 or self.base_amount <= 0 or self.quote_amount <= 0:
            raise ValueError(
                f"Trade {self.source_id} has a non-positive price or amount"
            )


@dataclass(frozen=True)
class Candle:
    """OHLCV summary of one fixed-width time bucket."""

    bucket_start: int  # Unix milliseconds, aligned to the bucket width
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal  # sum of quote amounts
    trade_count: int = 0


@dataclass(frozen=True)
class Pool:
    """A trading pool discovered from program-owned accounts.

    Vault addresses are derived from the mints and the pool signer when the
    pool is built, so they cannot drift from the mints they belong to.
    """

    pool_address: str
    base_mint: str
    quote_mint: str
    pool_signer: str
    base_vault: str
    quote_vault: str
    is_active: bool = False
    created_at: int | None = None  # first-seen time, best effort
    base_reserve: int = 0  # raw u64 counters from the pool record
    quote_reserve: int = 0


@dataclass(frozen=True)
class MarketMetrics:
    """Current market figures derived from the retained trades."""

    last_price: Decimal = Decimal("0")
    spot_price: Decimal | None = None  # quote vault / base vault balance
    price_change_24h: Decimal = Decimal("0")  # percent
    volume_24h: Decimal = Decimal("0")
    trade_count_24h: int = 0
    unique_traders: int = 0


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of one subject handed to consumers.

    Consumers must treat every field as immutable; the service replaces the
    whole snapshot on each refresh.
    """

    subject: str
    state: SubjectState = SubjectState.IDLE
    pool: Pool | None = None
    trades: tuple[Trade, ...] = ()  # newest first
    candles: tuple[Candle, ...] = ()  # ascending bucket_start
    metrics: MarketMetrics = field(default_factory=MarketMetrics)
    is_loading: bool = False
    error: str | None = None
    last_updated: int = 0  # Unix ms of the last successful refresh
