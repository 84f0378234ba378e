"""
Engine: the control loop that ties the components together.

Startup:
    connect -> bootstrap position -> baseline equity -> start fill worker,
    breaker task and tick loop.

Per tick (running, breaker closed, not paused):
    order book snapshot -> volatility refresh (rate-limited) -> desired
    ladder -> reconcile -> zombie sweep, then a jittered sleep.

Shutdown (idempotent):
    let the in-flight tick finish -> stop tick loop -> stop breaker and
    pending resume -> cancel all orders -> stop fill worker -> close venues.

The engine owns the control flow only; the business rules live in the
components it wires together.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from hypergrid.core.types import MarketSnapshot
from hypergrid.core.utils import now_ms
from hypergrid.execution.fill_deduplicator import FillDeduplicator
from hypergrid.execution.fill_processor import FillProcessor, HedgeConfig
from hypergrid.execution.reconciler import ReconcileConfig, ReconcileResult, ReconciliationEngine
from hypergrid.execution.zombie_sweeper import ZombieSweeper
from hypergrid.risk.circuit_breaker import CircuitBreakerConfig, DrawdownCircuitBreaker
from hypergrid.state.order_book import LiveOrderBook
from hypergrid.state.position_tracker import CostBasisTracker
from hypergrid.strategy.grid_calculator import GridBuildResult, GridCalculator, GridConfig
from hypergrid.strategy.volatility import VolatilityTracker
from hypergrid.venue.base import StartupError, VenueError, VolatilitySource

if TYPE_CHECKING:
    from hypergrid.config.config import Settings
    from hypergrid.monitoring.alerting import AlertManager
    from hypergrid.monitoring.metrics_rich import RichMetrics
    from hypergrid.venue.base import VenueConnector

log = logging.getLogger("hypergrid")


@dataclass
class TickResult:
    """Outcome of one tick, kept for status and tests."""
    started_ms: int
    skipped: Optional[str] = None
    mid: float = 0.0
    vol_multiplier: float = 1.0
    grid: Optional[GridBuildResult] = None
    reconcile: Optional[ReconcileResult] = None
    swept: list = field(default_factory=list)
    duration_ms: float = 0.0


class Engine:
    def __init__(
        self,
        settings: "Settings",
        venue: "VenueConnector",
        hedge_venue: Optional["VenueConnector"] = None,
        volatility_source: Optional[VolatilitySource] = None,
        metrics: Optional["RichMetrics"] = None,
        alerts: Optional["AlertManager"] = None,
        rng: Optional[random.Random] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.settings = settings
        self.symbol = settings.symbol
        self.venue = venue
        self.hedge_venue = hedge_venue
        self.metrics = metrics
        self.alerts = alerts
        self._rng = rng or random.Random()
        self._log_event = log_event or self._default_log

        self.tracker = CostBasisTracker(log_event=self._log_event)
        self.order_book = LiveOrderBook()
        self.grid = GridCalculator(GridConfig.from_settings(settings))
        self.reconciler = ReconciliationEngine(
            venue,
            self.order_book,
            ReconcileConfig.from_settings(settings),
            metrics=metrics,
            log_event=self._log_event,
        )
        self.sweeper = ZombieSweeper(
            venue,
            self.order_book,
            self.symbol,
            max_age_ms=settings.zombie_order_ms,
            metrics=metrics,
            log_event=self._log_event,
        )
        self.fill_processor = FillProcessor(
            self.symbol,
            venue,
            self.tracker,
            self.order_book,
            deduplicator=FillDeduplicator(),
            hedge_venue=hedge_venue,
            hedge_config=HedgeConfig.from_settings(settings),
            metrics=metrics,
            alerts=alerts,
            log_event=self._log_event,
        )
        self.breaker = DrawdownCircuitBreaker(
            venue,
            CircuitBreakerConfig.from_settings(settings),
            on_trip=self._cancel_all_on_trip,
            metrics=metrics,
            alerts=alerts,
            log_event=self._log_event,
        )
        if volatility_source is None and isinstance(venue, VolatilitySource):
            volatility_source = venue
        self.volatility: Optional[VolatilityTracker] = None
        if volatility_source is not None:
            self.volatility = VolatilityTracker(
                volatility_source,
                settings.hedge_symbol,
                interval=settings.atr_interval,
                period=settings.atr_period,
                base_spread=settings.base_spread,
                mult_min=settings.vol_multiplier_min,
                mult_max=settings.vol_multiplier_max,
                refresh_sec=settings.vol_refresh_sec,
            )

        self.running = False
        self.paused = False
        self._tick_in_flight = False
        self._tick_idle = asyncio.Event()
        self._tick_idle.set()
        self._stopped = False
        self.last_tick_ms: int = 0
        self.last_tick: Optional[TickResult] = None
        self.last_snapshot: Optional[MarketSnapshot] = None
        self.tick_count = 0
        self._loop_task: Optional[asyncio.Task] = None

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, "coin": self.symbol, **kwargs}))

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Connect and start the background tasks. Raises StartupError if the venue is unusable."""
        try:
            connected = await self.venue.connect()
        except Exception as exc:
            raise StartupError(f"venue connect failed: {exc}") from exc
        if not connected:
            raise StartupError("venue connect failed")

        if self.hedge_venue is not None and self.hedge_venue is not self.venue:
            try:
                await self.hedge_venue.connect()
            except Exception as exc:
                self._log_event("hedge_venue_connect_failed", error=str(exc))
                self.fill_processor.hedge_venue = None

        await self._bootstrap_position()

        try:
            equity = await self.breaker.set_baseline()
        except VenueError as exc:
            raise StartupError(f"cannot read account equity: {exc}") from exc

        self.running = True
        self.fill_processor.start()
        self.breaker.start()
        self._loop_task = asyncio.create_task(self._run_loop(), name="tick_loop")
        self._log_event("engine_started", equity=equity, reprice_mode=self.settings.reprice_mode)
        if self.metrics is not None:
            self.metrics.record_started()
        if self.alerts is not None:
            await self.alerts.alert_startup(self.symbol, equity, hedging=self.settings.enable_hedging)

    async def _bootstrap_position(self) -> None:
        try:
            state = await self.tracker.bootstrap_from_venue(
                self.venue,
                self.symbol,
                source=self.settings.cost_basis_source,
                history_limit=self.settings.trade_history_limit,
            )
        except VenueError as exc:
            self._log_event("position_bootstrap_failed", error=str(exc))
            return
        if state.is_flat or self.alerts is None:
            return
        mps = self.settings.min_profit_spread
        factor = 1 + mps if state.net_size > 0 else 1 - mps
        await self.alerts.alert_position_loaded(
            self.symbol, state.net_size, state.avg_entry_price, state.avg_entry_price * factor,
        )

    async def wait(self) -> None:
        """Block until the tick loop ends."""
        if self._loop_task is not None:
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

    async def shutdown(self, reason: str = "normal") -> None:
        if self._stopped:
            return
        self._stopped = True
        self.running = False
        self._log_event("engine_shutdown_start", reason=reason)

        if self._loop_task is not None:
            await self._stop_loop()
        await self.breaker.stop()
        try:
            await self.reconciler.cancel_all("shutdown")
        except Exception as exc:
            self._log_event("shutdown_cancel_all_failed", error=str(exc))
        await self.fill_processor.stop()
        for venue in {id(v): v for v in (self.venue, self.hedge_venue) if v is not None}.values():
            try:
                await venue.close()
            except Exception as exc:
                self._log_event("venue_close_failed", venue=venue.name, error=str(exc))

        self._log_event("engine_shutdown_complete", ticks=self.tick_count, volume=self.fill_processor.session_volume_usd)
        if self.alerts is not None:
            await self.alerts.alert_shutdown(reason, session_volume=round(self.fill_processor.session_volume_usd, 2))

    async def _stop_loop(self) -> None:
        """
        Let an in-flight tick finish before cancelling the loop.

        Cancelling mid-placement abandons an order that the executor thread
        still sends, so it would rest on the venue without a LiveOrder entry
        and escape the shutdown cancel-all. Only the sleep is cancelled.
        """
        task, self._loop_task = self._loop_task, None
        try:
            await asyncio.wait_for(self._tick_idle.wait(), timeout=self.settings.shutdown_grace_sec)
        except asyncio.TimeoutError:
            self._log_event("shutdown_tick_wait_timeout", grace_sec=self.settings.shutdown_grace_sec)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Control loop
    # ------------------------------------------------------------------ #

    def next_delay(self) -> float:
        cfg = self.settings
        return self._rng.uniform(cfg.jitter_min_ms, cfg.jitter_max_ms) / 1000.0

    async def _run_loop(self) -> None:
        self._log_event("tick_loop_start")
        while self.running:
            if self.breaker.is_open:
                self._log_event("circuit_open_idle", resume_in_sec=round(self.breaker.cooldown_remaining, 1))
                await asyncio.sleep(self.settings.circuit_idle_sleep_sec)
                continue
            if not self.paused:
                await self.tick()
            await asyncio.sleep(self.next_delay())
        self._log_event("tick_loop_end", ticks=self.tick_count)

    async def tick(self) -> Optional[TickResult]:
        """One pass. Returns None when another tick is already running."""
        if self._tick_in_flight:
            self._log_event("tick_overlap_skipped")
            return None
        self._tick_in_flight = True
        self._tick_idle.clear()
        result = TickResult(started_ms=now_ms())
        self.last_tick_ms = result.started_ms
        t0 = time.perf_counter()
        try:
            await self._tick(result)
        except Exception as exc:
            result.skipped = "error"
            self._log_event("tick_error", error=str(exc), error_type=type(exc).__name__)
            if self.metrics is not None:
                self.metrics.record_tick_error()
        finally:
            result.duration_ms = (time.perf_counter() - t0) * 1000
            self._tick_in_flight = False
            self._tick_idle.set()
        self.last_tick = result
        if self.metrics is not None and result.skipped is None and result.grid is not None:
            self.metrics.record_tick(
                result.duration_ms, result.mid, result.vol_multiplier, result.grid.inventory_adj, len(self.order_book),
            )
        return result

    async def _tick(self, result: TickResult) -> None:
        snapshot = await self.venue.get_order_book_snapshot(self.symbol)
        self.last_snapshot = snapshot
        if snapshot.is_empty:
            result.skipped = "empty_book"
            self._log_event("tick_skipped_empty_book")
            return
        result.mid = snapshot.mid_price

        vol_mult = 1.0
        if self.volatility is not None:
            try:
                vol_mult = await self.volatility.maybe_refresh(snapshot.mid_price)
            except VenueError as exc:
                vol_mult = self.volatility.multiplier
                self._log_event("volatility_refresh_failed", error=str(exc))
        result.vol_multiplier = vol_mult

        position = await self.tracker.snapshot()
        grid = self.grid.build(snapshot, position, vol_mult)
        result.grid = grid

        # The breaker or an operator may have stopped trading while we awaited.
        if self.breaker.is_open or self.paused or not self.running:
            result.skipped = "halted"
            return

        result.reconcile = await self.reconciler.reconcile(grid.orders)
        result.swept = await self.sweeper.sweep()

        self.tick_count += 1
        self._log_event(
            "tick",
            mid=round(snapshot.mid_price, 2),
            vol=round(vol_mult, 3),
            inv=round(position.net_size, 6),
            adj=round(grid.inventory_adj, 4),
            targets=len(grid.orders),
            live=len(self.order_book),
        )

    async def _cancel_all_on_trip(self) -> None:
        await self.reconciler.cancel_all("circuit_open")

    # ------------------------------------------------------------------ #
    # Control surface
    # ------------------------------------------------------------------ #

    async def pause(self, by: str = "operator") -> None:
        """Stop trading and cancel every order; the loop keeps running idle."""
        self.paused = True
        cancelled = await self.reconciler.cancel_all("paused")
        self._log_event("trading_paused", by=by, cancelled=cancelled)
        if self.alerts is not None:
            await self.alerts.alert_trading(True, by=by)

    async def resume(self, by: str = "operator") -> None:
        """Reset the breaker to current equity, clear stray orders and trade again."""
        await self.breaker.manual_resume()
        cancelled = await self.reconciler.cancel_all("resume")
        self.paused = False
        self._log_event("trading_resumed", by=by, cancelled=cancelled, baseline=self.breaker.baseline)
        if self.alerts is not None:
            await self.alerts.alert_trading(False, by=by)

    def tick_age_ms(self) -> Optional[int]:
        if self.last_tick_ms <= 0:
            return None
        return now_ms() - self.last_tick_ms

    def is_healthy(self, max_tick_age_ms: Optional[int] = None) -> bool:
        limit = max_tick_age_ms if max_tick_age_ms is not None else self.settings.health_max_tick_age_ms
        age = self.tick_age_ms()
        return self.running and age is not None and age < limit

    def get_status_snapshot(self) -> Dict[str, Any]:
        snapshot = self.last_snapshot
        return {
            "symbol": self.symbol,
            "running": self.running,
            "paused": self.paused,
            "circuit_open": self.breaker.is_open,
            "baseline_equity": self.breaker.baseline,
            "circuit": self.breaker.get_state(),
            "mid_price": snapshot.mid_price if snapshot is not None and not snapshot.is_empty else None,
            **self.tracker.get_state(),
            "vol_multiplier": self.volatility.multiplier if self.volatility is not None else 1.0,
            "live_orders": len(self.order_book),
            "session_volume_usd": self.fill_processor.session_volume_usd,
            "fill_count": self.fill_processor.fill_count,
            "hedging": self.settings.enable_hedging,
            "ticks": self.tick_count,
        }

    async def get_balance_snapshot(self) -> Dict[str, Any]:
        balance = await self.venue.get_balance()
        position = self.tracker.state
        mid = self.last_snapshot.mid_price if self.last_snapshot is not None else 0.0
        return {
            "symbol": self.symbol,
            "balance": balance,
            "net_size": position.net_size,
            "notional": position.notional(mid),
        }

    def get_health_snapshot(self) -> Dict[str, Any]:
        return {
            "healthy": self.is_healthy(),
            "running": self.running,
            "tick_age_ms": self.tick_age_ms(),
            "live_orders": len(self.order_book),
            "circuit_open": self.breaker.is_open,
        }
