"""Heuristic trade classification from parsed transactions.

The launchpad program publishes no instruction schema we can rely on, so a
trade is reconstructed from two loose signals:

- the SOL balance delta of the first non-pool, non-program signer
  (negative = the user paid = BUY, otherwise SELL), and
- the first ``Transfer <amount>`` found in the log lines, scaled by the
  assumed token decimals.

When the logs carry no amount the base side is estimated from the quote
side. Anything ambiguous is dropped: a missed trade is acceptable, a
fabricated one is not.
"""

import re
import time
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Protocol

from feed.chain.types import LAMPORTS_PER_SOL, ParsedTransaction
from feed.logging import get_logger
from feed.models import Trade, TradeSide

logger = get_logger(__name__)

_TRANSFER_PATTERN = re.compile(r"Transfer\s+(\d+)", re.IGNORECASE)


class AmountDecoder(Protocol):
    """Extracts the base-token amount moved by a transaction."""

    def decode_base_amount(self, tx: ParsedTransaction) -> Decimal | None:
        """Return the base amount in UI units, or None if it cannot be found."""
        ...


class LogTransferAmountDecoder:
    """Best-effort decoder reading the first transfer amount from log text."""

    def __init__(self, decimals: int = 6) -> None:
        self._scale = Decimal(10) ** decimals

    def decode_base_amount(self, tx: ParsedTransaction) -> Decimal | None:
        for line in tx.log_messages:
            match = _TRANSFER_PATTERN.search(line)
            if match:
                return Decimal(match.group(1)) / self._scale
        return None


class TradeClassifier:
    """Turns one parsed transaction into a Trade, or rejects it with None.

    Args:
        decoder: Base amount decoder. Defaults to the log-text heuristic.
        estimate_multiplier: Base units assumed per quote unit when the
            decoder finds nothing. A rough approximation, flagged on the Trade.
        clock: Returns Unix seconds; used when the transaction has no block time.
    """

    def __init__(
        self,
        decoder: AmountDecoder | None = None,
        estimate_multiplier: Decimal = Decimal("1000000"),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._decoder = decoder if decoder is not None else LogTransferAmountDecoder()
        self._estimate_multiplier = estimate_multiplier
        self._clock = clock

    def classify(
        self,
        tx: ParsedTransaction,
        pool_address: str,
        program_address: str,
    ) -> Trade | None:
        if tx.failed or not tx.pre_balances or not tx.post_balances:
            return None

        user_index = _find_user_index(tx, {pool_address, program_address})
        if user_index is None:
            return None
        if user_index >= len(tx.pre_balances) or user_index >= len(tx.post_balances):
            return None

        lamport_change = tx.post_balances[user_index] - tx.pre_balances[user_index]
        sol_change = Decimal(lamport_change) / Decimal(LAMPORTS_PER_SOL)
        side = TradeSide.BUY if sol_change < 0 else TradeSide.SELL
        quote_amount = abs(sol_change)
        if quote_amount == 0:
            return None

        base_amount = self._decoder.decode_base_amount(tx)
        estimated = not base_amount
        if estimated:
            base_amount = quote_amount * self._estimate_multiplier

        price = quote_amount / base_amount
        if price == 0:
            return None

        block_time = tx.block_time if tx.block_time is not None else self._clock()
        return Trade(
            timestamp=int(block_time * 1000),
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            side=side,
            source_id=tx.signature,
            counterparty=tx.account_keys[user_index].pubkey,
            base_amount_estimated=estimated,
        )


def _find_user_index(tx: ParsedTransaction, excluded: set[str]) -> int | None:
    for index, key in enumerate(tx.account_keys):
        if key.signer and key.pubkey not in excluded:
            return index
    return None


def sort_newest_first(trades: Sequence[Trade]) -> list[Trade]:
    """Order trades by timestamp descending, ties broken by source id."""
    return sorted(trades, key=lambda t: (t.timestamp, t.source_id), reverse=True)
