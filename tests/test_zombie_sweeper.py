"""
Tests for ZombieSweeper.
"""

import pytest

from hypergrid.core.types import LiveOrder
from hypergrid.core.utils import now_ms
from hypergrid.execution.zombie_sweeper import ZombieSweeper
from hypergrid.state.order_book import LiveOrderBook

from conftest import FakeVenue


class TestZombieSweeper:
    @pytest.mark.asyncio
    async def test_old_orders_swept_young_kept(self):
        at = now_ms()
        book = LiveOrderBook()
        book.put(LiveOrder("buy_0", "1", 99_900.0, 0.01, placed_at=at - 900_001))
        book.put(LiveOrder("sell_0", "2", 100_100.0, 0.01, placed_at=at - 10_000))
        venue = FakeVenue()
        sweeper = ZombieSweeper(venue, book, "BTC", max_age_ms=900_000)
        swept = await sweeper.sweep(at)
        assert swept == ["buy_0"]
        assert "buy_0" not in book
        assert "sell_0" in book
        assert venue.cancelled == ["1"]

    @pytest.mark.asyncio
    async def test_removed_even_when_cancel_fails(self):
        at = now_ms()
        book = LiveOrderBook()
        book.put(LiveOrder("buy_1", "7", 99_800.0, 0.01, placed_at=at - 2_000_000))
        venue = FakeVenue()
        venue.fail_cancel = True
        sweeper = ZombieSweeper(venue, book, "BTC", max_age_ms=900_000)
        swept = await sweeper.sweep(at)
        assert swept == ["buy_1"]
        assert len(book) == 0

    @pytest.mark.asyncio
    async def test_nothing_to_sweep(self):
        book = LiveOrderBook()
        sweeper = ZombieSweeper(FakeVenue(), book, "BTC")
        assert await sweeper.sweep() == []
