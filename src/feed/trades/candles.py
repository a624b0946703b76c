"""OHLCV candle aggregation over classified trades.

Candles are rebuilt from the full retained trade set on every refresh. The
trade set itself is replaced wholesale each cycle, so there is no earlier
candle state to merge into.
"""

from collections.abc import Iterable
from decimal import Decimal

from feed.models import Candle, Trade

#: One hour, the chart resolution used by the dashboard.
HOUR_MS = 60 * 60 * 1000


def bucket_start(timestamp_ms: int, bucket_width_ms: int) -> int:
    """Align a timestamp down to the start of its bucket."""
    return (timestamp_ms // bucket_width_ms) * bucket_width_ms


def aggregate_candles(trades: Iterable[Trade], bucket_width_ms: int = HOUR_MS) -> list[Candle]:
    """Fold trades into fixed-width OHLCV candles.

    Input order does not matter. Within a bucket trades are ordered by
    timestamp (ties by source id): open is the earliest trade's price, close
    the latest. Volume sums quote amounts.

    Args:
        trades: Trades in any order.
        bucket_width_ms: Bucket width in milliseconds.

    Returns:
        Candles sorted by bucket_start ascending, one per non-empty bucket.
    """
    if bucket_width_ms <= 0:
        raise ValueError("bucket_width_ms must be positive")

    buckets: dict[int, list[Trade]] = {}
    for trade in trades:
        buckets.setdefault(bucket_start(trade.timestamp, bucket_width_ms), []).append(trade)

    candles = []
    for start in sorted(buckets):
        ordered = sorted(buckets[start], key=lambda t: (t.timestamp, t.source_id))
        prices = [t.price for t in ordered]
        candles.append(
            Candle(
                bucket_start=start,
                open=ordered[0].price,
                high=max(prices),
                low=min(prices),
                close=ordered[-1].price,
                volume=sum((t.quote_amount for t in ordered), Decimal("0")),
                trade_count=len(ordered),
            )
        )
    return candles
