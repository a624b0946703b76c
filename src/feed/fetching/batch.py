"""Bounded-concurrency batch walk over an ordered list of remote records.

Items are processed in contiguous batches; all items of a batch run
concurrently and the walk pauses between batches (never after the last).
Per-item failures never abort the walk: they are returned as skipped
entries so the caller decides whether to log or ignore them.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from feed.logging import get_logger

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass
class SkippedItem(Generic[ItemT]):
    """An input item that produced no result, and why."""

    item: ItemT
    reason: str


@dataclass
class BatchResult(Generic[ItemT, ResultT]):
    """Outcome of a batch walk.

    ``succeeded`` carries no ordering guarantee relative to the input.
    """

    succeeded: list[ResultT] = field(default_factory=list)
    skipped: list[SkippedItem[ItemT]] = field(default_factory=list)
    batches: int = 0


class BatchScheduler:
    """Runs an async operation over items in delayed, concurrent batches.

    Args:
        batch_size: Items per batch (the fan-out bound).
        batch_delay: Seconds to wait between consecutive batches.
        max_items: Ceiling on items scanned from the front of the input.
            None scans everything.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        batch_size: int,
        batch_delay: float = 0.2,
        max_items: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._max_items = max_items
        self._sleep = sleep

    async def run(
        self,
        items: Sequence[ItemT],
        operation: Callable[[ItemT], Awaitable[ResultT | None]],
    ) -> BatchResult[ItemT, ResultT]:
        """Process ``items`` and collect successes and skips.

        An operation that raises, or returns None, marks its item skipped.
        ``asyncio.CancelledError`` is never absorbed.
        """
        if self._max_items is not None:
            items = items[: self._max_items]

        result: BatchResult[ItemT, ResultT] = BatchResult()
        total = len(items)

        for start in range(0, total, self._batch_size):
            batch = items[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(operation(item) for item in batch),
                return_exceptions=True,
            )
            result.batches += 1

            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    result.skipped.append(SkippedItem(item, f"{type(outcome).__name__}: {outcome}"))
                elif isinstance(outcome, BaseException):
                    raise outcome
                elif outcome is None:
                    result.skipped.append(SkippedItem(item, "no result"))
                else:
                    result.succeeded.append(outcome)

            if start + self._batch_size < total:
                await self._sleep(self._batch_delay)

        logger.debug(
            "batch_walk_complete",
            items=total,
            batches=result.batches,
            succeeded=len(result.succeeded),
            skipped=len(result.skipped),
        )
        return result
