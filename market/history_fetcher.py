"""Async price-history fetches with in-flight de-duplication.

Charts re-render often; every render asks for the same trailing window.
Concurrent requests for the same (symbol, year, month, months) share one
task. Completed results are kept for reuse, at most ``max_entries`` of them
(oldest dropped first); the game loop calls :meth:`evict_before` as the
clock moves so windows for past months do not pile up.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from market.price_feed import PriceSource

logger = logging.getLogger(__name__)

HistoryKey = tuple[str, int, int, int]


class HistoryFetcher:
    def __init__(self, source: PriceSource, timeout: float = 10.0, max_entries: int = 256):
        self._source = source
        self._timeout = timeout
        self._max_entries = max_entries
        self._inflight: dict[HistoryKey, asyncio.Task] = {}
        self._done: dict[HistoryKey, list[Decimal]] = {}
        self.source_calls = 0

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def fetch(self, symbol: str, calendar_year: int, calendar_month: int, months: int) -> list[Decimal]:
        key: HistoryKey = (symbol, calendar_year, calendar_month, months)
        if key in self._done:
            return list(self._done[key])

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))

        # shield: one caller timing out must not cancel the shared task
        result = await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout)
        return list(result)

    async def _load(self, key: HistoryKey) -> list[Decimal]:
        symbol, year, month, months = key
        self.source_calls += 1
        try:
            result = await asyncio.to_thread(self._source.get_price_history, symbol, year, month, months)
        except Exception:
            logger.exception("History fetch failed for %s %d-%02d (%d months)", symbol, year, month, months)
            raise
        self._done[key] = result
        while len(self._done) > self._max_entries:
            del self._done[next(iter(self._done))]
        return result

    @property
    def cached_count(self) -> int:
        return len(self._done)

    def evict_before(self, calendar_year: int, calendar_month: int) -> int:
        """Drop cached windows ending before the given month. Returns how many went."""
        stale = [k for k in self._done if (k[1], k[2]) < (calendar_year, calendar_month)]
        for key in stale:
            del self._done[key]
        return len(stale)

    def clear(self) -> None:
        self._done.clear()
