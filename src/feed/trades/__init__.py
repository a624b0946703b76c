"""Trade layer -- classification, candle aggregation and market metrics."""

from feed.trades.candles import HOUR_MS, aggregate_candles, bucket_start
from feed.trades.classifier import (
    AmountDecoder,
    LogTransferAmountDecoder,
    TradeClassifier,
    sort_newest_first,
)
from feed.trades.metrics import compute_market_metrics

__all__ = [
    "HOUR_MS",
    "AmountDecoder",
    "LogTransferAmountDecoder",
    "TradeClassifier",
    "aggregate_candles",
    "bucket_start",
    "compute_market_metrics",
    "sort_newest_first",
]
