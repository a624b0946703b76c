"""Current market figures derived from a subject's retained trades."""

from collections.abc import Sequence
from decimal import Decimal

from feed.models import MarketMetrics, Trade

DAY_MS = 24 * 60 * 60 * 1000

_PERCENT_QUANTIZE = Decimal("0.01")


def compute_market_metrics(
    trades: Sequence[Trade],
    now_ms: int,
    spot_price: Decimal | None = None,
    window_ms: int = DAY_MS,
) -> MarketMetrics:
    """Summarise trades (newest first) into last price, 24h volume and change.

    The 24h change compares the newest trade against the oldest trade inside
    the window. With fewer than two trades in the window the change is zero.
    """
    if not trades:
        return MarketMetrics(spot_price=spot_price)

    cutoff = now_ms - window_ms
    recent = [t for t in trades if t.timestamp > cutoff]

    price_change = Decimal("0")
    if len(recent) >= 2:
        newest, oldest = recent[0], recent[-1]
        price_change = ((newest.price - oldest.price) / oldest.price * 100).quantize(
            _PERCENT_QUANTIZE
        )

    return MarketMetrics(
        last_price=trades[0].price,
        spot_price=spot_price,
        price_change_24h=price_change,
        volume_24h=sum((t.quote_amount for t in recent), Decimal("0")),
        trade_count_24h=len(recent),
        unique_traders=len({t.counterparty for t in trades}),
    )
