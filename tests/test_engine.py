"""
Tests for the Engine control loop and control surface.

Tests cover:
- Startup failure modes and bootstrap
- One tick places the ladder; overlapping ticks are skipped
- Empty book and halted ticks place nothing
- Circuit trip cancels orders and halts quoting
- Pause/resume and idempotent shutdown
- Shutdown drains an in-flight placement before cancel-all
- Fills from the venue stream reach the position
"""

import asyncio
import random

import pytest

from hypergrid.core.types import FillEvent, Side, VenuePosition
from hypergrid.orchestrator.engine import Engine
from hypergrid.venue.base import StartupError

from conftest import FakeVenue, make_settings


class SlowPlaceVenue(FakeVenue):
    """Placements land even if the caller is cancelled, like an executor thread."""

    def __init__(self, delay: float = 0.02, **kwargs) -> None:
        super().__init__(**kwargs)
        self.delay = delay
        self.resting = {}

    async def place_order(self, order):
        return await asyncio.shield(self._land(order))

    async def _land(self, order):
        await asyncio.sleep(self.delay)
        order_id = await super().place_order(order)
        self.resting[order_id] = order
        return order_id

    async def cancel_order(self, symbol, order_id):
        ok = await super().cancel_order(symbol, order_id)
        self.resting.pop(order_id, None)
        return ok


def make_engine(venue=None, **overrides) -> Engine:
    params = dict(jitter_min_ms=10, jitter_max_ms=20, circuit_check_interval_sec=60.0)
    params.update(overrides)
    return Engine(make_settings(**params), venue or FakeVenue(), rng=random.Random(7))


class TestStartup:
    @pytest.mark.asyncio
    async def test_connect_failure_raises(self):
        venue = FakeVenue()
        venue.connect_ok = False
        engine = make_engine(venue)
        with pytest.raises(StartupError):
            await engine.start()
        assert not engine.running

    @pytest.mark.asyncio
    async def test_unreadable_equity_raises(self):
        venue = FakeVenue()
        venue.fail_balance = True
        engine = make_engine(venue)
        with pytest.raises(StartupError):
            await engine.start()

    @pytest.mark.asyncio
    async def test_start_bootstraps_and_quotes(self):
        venue = FakeVenue(position=VenuePosition("BTC", 0.01, 95_000.0), equity=5000.0)
        engine = make_engine(venue)
        await engine.start()
        await asyncio.sleep(0.05)
        assert engine.running
        assert engine.breaker.baseline == 5000.0
        assert engine.tracker.state.net_size == 0.01
        assert engine.tick_count >= 1
        assert len(engine.order_book) > 0
        await engine.shutdown()


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_places_ladder(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        engine.running = True
        result = await engine.tick()
        assert result.skipped is None
        assert result.mid == 100_000.0
        assert len(result.grid.orders) == 10
        assert result.reconcile.placed == 10
        assert len(engine.order_book) == 10
        assert engine.last_tick_ms > 0

    @pytest.mark.asyncio
    async def test_second_tick_is_quiet(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        engine.running = True
        await engine.tick()
        result = await engine.tick()
        assert result.reconcile.venue_calls == 0
        assert len(venue.placed) == 10

    @pytest.mark.asyncio
    async def test_overlapping_tick_skipped(self):
        engine = make_engine()
        engine.running = True
        engine._tick_in_flight = True
        assert await engine.tick() is None

    @pytest.mark.asyncio
    async def test_empty_book_skipped(self):
        venue = FakeVenue(bid=0.0, ask=0.0)
        engine = make_engine(venue)
        engine.running = True
        result = await engine.tick()
        assert result.skipped == "empty_book"
        assert venue.placed == []

    @pytest.mark.asyncio
    async def test_tick_error_is_contained(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        engine.running = True

        async def broken(symbol):
            raise RuntimeError("book feed down")

        venue.get_order_book_snapshot = broken
        result = await engine.tick()
        assert result.skipped == "error"
        assert not engine._tick_in_flight

    @pytest.mark.asyncio
    async def test_not_running_builds_but_does_not_trade(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        result = await engine.tick()
        assert result.skipped == "halted"
        assert result.grid.orders
        assert venue.placed == []


class TestCircuitIntegration:
    @pytest.mark.asyncio
    async def test_trip_cancels_and_halts(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        engine.running = True
        await engine.breaker.set_baseline(1000.0)
        await engine.tick()
        assert len(engine.order_book) == 10

        assert await engine.breaker.check(900.0)
        assert len(engine.order_book) == 0
        assert len(venue.cancelled) == 10

        result = await engine.tick()
        assert result.skipped == "halted"
        assert len(venue.placed) == 10
        await engine.breaker.stop()


class TestControlSurface:
    @pytest.mark.asyncio
    async def test_pause_cancels_everything(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        engine.running = True
        await engine.tick()
        await engine.pause(by="test")
        assert engine.paused
        assert len(engine.order_book) == 0
        assert (await engine.tick()).skipped == "halted"

    @pytest.mark.asyncio
    async def test_resume_resets_breaker(self):
        venue = FakeVenue(equity=1000.0)
        engine = make_engine(venue)
        engine.running = True
        await engine.breaker.set_baseline()
        await engine.breaker.check(900.0)
        await engine.pause()
        venue.equity = 900.0
        await engine.resume()
        assert not engine.paused
        assert not engine.breaker.is_open
        assert engine.breaker.baseline == 900.0
        result = await engine.tick()
        assert result.skipped is None

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        await engine.start()
        await asyncio.sleep(0.05)
        live = len(engine.order_book)
        await engine.shutdown("test")
        assert not engine.running
        assert len(engine.order_book) == 0
        assert len(venue.cancelled) >= live
        assert venue.closed
        cancelled = len(venue.cancelled)
        await engine.shutdown("again")
        assert len(venue.cancelled) == cancelled

    @pytest.mark.asyncio
    async def test_health(self):
        engine = make_engine()
        assert not engine.is_healthy()
        engine.running = True
        await engine.tick()
        assert engine.is_healthy()
        assert not engine.is_healthy(max_tick_age_ms=-1)
        health = engine.get_health_snapshot()
        assert health["healthy"]
        assert health["live_orders"] == 10

    @pytest.mark.asyncio
    async def test_status_snapshots(self):
        venue = FakeVenue(equity=2500.0)
        engine = make_engine(venue)
        engine.running = True
        await engine.tick()
        status = engine.get_status_snapshot()
        assert status["symbol"] == "BTC"
        assert status["mid_price"] == 100_000.0
        assert status["live_orders"] == 10
        balance = await engine.get_balance_snapshot()
        assert balance["balance"] == 2500.0

    def test_next_delay_within_jitter(self):
        engine = make_engine()
        for _ in range(20):
            assert 0.010 <= engine.next_delay() <= 0.020


class TestFillFlow:
    @pytest.mark.asyncio
    async def test_stream_fill_updates_position_and_frees_slot(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        await engine.start()
        await asyncio.sleep(0.05)
        order = engine.order_book.get("buy_0")
        assert order is not None
        venue.fills.put_nowait(
            FillEvent(Side.BUY, order.price, order.size, venue_order_id=order.venue_order_id, fill_id="t1")
        )
        await asyncio.wait_for(venue.fills.join(), timeout=1.0)
        assert engine.tracker.state.net_size == pytest.approx(order.size)
        assert engine.fill_processor.session_volume_usd == pytest.approx(order.price * order.size)
        await engine.shutdown()


class TestShutdownOrdering:
    @pytest.mark.asyncio
    async def test_in_flight_placement_is_cancelled(self):
        venue = SlowPlaceVenue(delay=0.02)
        engine = make_engine(venue)
        await engine.start()
        await asyncio.sleep(0.03)
        assert engine._tick_in_flight
        await engine.shutdown("test")
        await asyncio.sleep(0.05)
        assert venue.resting == {}
        assert len(venue.placed) == len(venue.cancelled)
        assert len(engine.order_book) == 0

    @pytest.mark.asyncio
    async def test_grace_timeout_still_cancels_tracked_orders(self):
        venue = SlowPlaceVenue(delay=0.02)
        engine = make_engine(venue, shutdown_grace_sec=0.0)
        await engine.start()
        await asyncio.sleep(0.05)
        await engine.shutdown("test")
        assert len(engine.order_book) == 0
        assert venue.closed
        await asyncio.sleep(0.05)

    @pytest.mark.asyncio
    async def test_stop_loop_then_breaker_then_cancel_then_close(self):
        venue = FakeVenue()
        engine = make_engine(venue)
        await engine.start()
        await asyncio.sleep(0.05)
        calls = []
        loop_task = engine._loop_task

        stop_breaker = engine.breaker.stop
        cancel_all = engine.reconciler.cancel_all
        close_venue = venue.close

        async def breaker_stop():
            calls.append(("breaker", loop_task.done()))
            await stop_breaker()

        async def reconciler_cancel_all(reason):
            calls.append(("cancel_all", reason))
            return await cancel_all(reason)

        async def venue_close():
            calls.append(("close", None))
            await close_venue()

        engine.breaker.stop = breaker_stop
        engine.reconciler.cancel_all = reconciler_cancel_all
        venue.close = venue_close
        await engine.shutdown("test")
        assert calls == [("breaker", True), ("cancel_all", "shutdown"), ("close", None)]


class TestHealthStamp:
    @pytest.mark.asyncio
    async def test_empty_book_tick_counts_as_alive(self):
        venue = FakeVenue(bid=0.0, ask=0.0)
        engine = make_engine(venue)
        engine.running = True
        result = await engine.tick()
        assert result.skipped == "empty_book"
        assert engine.last_tick_ms == result.started_ms
        assert engine.is_healthy()

    @pytest.mark.asyncio
    async def test_status_includes_breaker_state(self):
        venue = FakeVenue(equity=1000.0)
        engine = make_engine(venue)
        engine.running = True
        await engine.breaker.set_baseline()
        await engine.breaker.check(960.0)
        status = engine.get_status_snapshot()
        assert status["circuit"]["trip_count"] == 0
        assert status["circuit"]["drawdown"] == pytest.approx(-0.04)
        assert status["cost_basis"] == 0.0
