"""Tests for market.history_fetcher: shared in-flight history requests."""

import asyncio
import time
from decimal import Decimal

import pytest

from market.history_fetcher import HistoryFetcher
from market.price_feed import StaticPriceFeed


class SlowFeed(StaticPriceFeed):
    def __init__(self, prices, delay=0.05, fail=False):
        super().__init__(prices)
        self.delay = delay
        self.fail = fail
        self.calls = 0

    def get_price_history(self, symbol, calendar_year, calendar_month, months):
        self.calls += 1
        time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("source down")
        return super().get_price_history(symbol, calendar_year, calendar_month, months)


@pytest.fixture
def slow_feed():
    return SlowFeed({"GOLD": {(2005, 1): 100, (2005, 3): 110}})


class TestHistoryFetcher:
    def test_concurrent_requests_share_one_load(self, slow_feed):
        async def scenario():
            fetcher = HistoryFetcher(slow_feed)
            results = await asyncio.gather(*[fetcher.fetch("GOLD", 2005, 3, 3) for _ in range(5)])
            return fetcher, results

        fetcher, results = asyncio.run(scenario())
        assert fetcher.source_calls == 1
        assert slow_feed.calls == 1
        assert all(r == [Decimal("100"), Decimal("100"), Decimal("110")] for r in results)
        assert fetcher.inflight_count == 0

    def test_completed_results_are_reused_until_clear(self, slow_feed):
        async def scenario():
            fetcher = HistoryFetcher(slow_feed)
            await fetcher.fetch("GOLD", 2005, 3, 3)
            await fetcher.fetch("GOLD", 2005, 3, 3)
            assert fetcher.source_calls == 1
            fetcher.clear()
            await fetcher.fetch("GOLD", 2005, 3, 3)
            assert fetcher.source_calls == 2

        asyncio.run(scenario())

    def test_different_windows_load_separately(self, slow_feed):
        async def scenario():
            fetcher = HistoryFetcher(slow_feed)
            await asyncio.gather(fetcher.fetch("GOLD", 2005, 3, 3), fetcher.fetch("GOLD", 2005, 3, 6))
            return fetcher

        assert asyncio.run(scenario()).source_calls == 2

    def test_returned_list_is_a_copy(self, slow_feed):
        async def scenario():
            fetcher = HistoryFetcher(slow_feed)
            first = await fetcher.fetch("GOLD", 2005, 3, 2)
            first.clear()
            return await fetcher.fetch("GOLD", 2005, 3, 2)

        assert len(asyncio.run(scenario())) == 2

    def test_failure_propagates_and_is_not_cached(self):
        feed = SlowFeed({"GOLD": {(2005, 1): 100}}, delay=0, fail=True)

        async def scenario():
            fetcher = HistoryFetcher(feed)
            with pytest.raises(RuntimeError, match="source down"):
                await fetcher.fetch("GOLD", 2005, 1, 1)
            feed.fail = False
            assert await fetcher.fetch("GOLD", 2005, 1, 1) == [Decimal("100")]
            assert fetcher.source_calls == 2

        asyncio.run(scenario())

    def test_timeout(self):
        feed = SlowFeed({"GOLD": {(2005, 1): 100}}, delay=0.3)

        async def scenario():
            fetcher = HistoryFetcher(feed, timeout=0.01)
            with pytest.raises(asyncio.TimeoutError):
                await fetcher.fetch("GOLD", 2005, 1, 1)
            # the shared load keeps running and finishes for the next caller
            fetcher._timeout = 5
            assert await fetcher.fetch("GOLD", 2005, 1, 1) == [Decimal("100")]
            assert fetcher.source_calls == 1

        asyncio.run(scenario())

    def test_evict_before_drops_past_windows(self, slow_feed):
        async def scenario():
            fetcher = HistoryFetcher(slow_feed)
            await fetcher.fetch("GOLD", 2005, 1, 1)
            await fetcher.fetch("GOLD", 2005, 3, 2)
            assert fetcher.evict_before(2005, 3) == 1
            assert fetcher.cached_count == 1
            await fetcher.fetch("GOLD", 2005, 3, 2)
            assert fetcher.source_calls == 2

        asyncio.run(scenario())

    def test_cache_is_capped(self):
        feed = SlowFeed({"GOLD": {(2005, 1): 100}}, delay=0)

        async def scenario():
            fetcher = HistoryFetcher(feed, max_entries=2)
            for months in (1, 2, 3):
                await fetcher.fetch("GOLD", 2005, 1, months)
            assert fetcher.cached_count == 2
            await fetcher.fetch("GOLD", 2005, 1, 3)
            assert fetcher.source_calls == 3
            await fetcher.fetch("GOLD", 2005, 1, 1)  # oldest entry was dropped
            assert fetcher.source_calls == 4

        asyncio.run(scenario())
