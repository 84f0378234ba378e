"""
DrawdownCircuitBreaker: stop quoting when equity falls too far below its baseline.

Handles:
- periodic equity checks on its own task
- trip (Closed -> Open): cancel every live order, schedule auto-resume
- auto-resume after the cooldown and manual resume, both re-baselining equity
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from hypergrid.venue.base import VenueError

if TYPE_CHECKING:
    from hypergrid.config.config import Settings
    from hypergrid.monitoring.alerting import AlertManager
    from hypergrid.monitoring.metrics_rich import RichMetrics
    from hypergrid.venue.base import VenueConnector

log = logging.getLogger("hypergrid")


@dataclass
class CircuitBreakerConfig:
    """Configuration for drawdown breaker behavior."""
    threshold: float = 0.05  # Fractional drawdown from baseline that trips
    cooldown_sec: float = 1800.0  # Seconds Open before auto-resume
    check_interval_sec: float = 60.0

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "CircuitBreakerConfig":
        return cls(
            threshold=cfg.circuit_threshold,
            cooldown_sec=cfg.circuit_cooldown_sec,
            check_interval_sec=cfg.circuit_check_interval_sec,
        )


@dataclass
class CircuitBreakerState:
    baseline_equity: float = 0.0
    tripped: bool = False
    resume_at: Optional[float] = None


class DrawdownCircuitBreaker:
    """
    Equity drawdown breaker.

    The baseline is only ever reset while Closed or by a resume; a trip never
    moves it.
    """

    def __init__(
        self,
        venue: "VenueConnector",
        config: Optional[CircuitBreakerConfig] = None,
        on_trip: Optional[Callable[[], Awaitable[Any]]] = None,
        metrics: Optional["RichMetrics"] = None,
        alerts: Optional["AlertManager"] = None,
        log_event: Optional[Callable[..., None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.venue = venue
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitBreakerState()
        self.last_equity: Optional[float] = None
        self.trip_count = 0
        self._on_trip = on_trip
        self.metrics = metrics
        self.alerts = alerts
        self._log_event = log_event or self._default_log
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._resume_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    @property
    def is_open(self) -> bool:
        return self.state.tripped

    @property
    def baseline(self) -> float:
        return self.state.baseline_equity

    @property
    def cooldown_remaining(self) -> float:
        if not self.state.tripped or self.state.resume_at is None:
            return 0.0
        return max(0.0, self.state.resume_at - self._clock())

    def drawdown(self, equity: float) -> float:
        """Signed change from baseline as a fraction; negative is a loss."""
        base = self.state.baseline_equity
        if base <= 0:
            return 0.0
        return (equity - base) / base

    async def fetch_equity(self) -> float:
        equity = await self.venue.get_balance()
        self.last_equity = equity
        return equity

    async def set_baseline(self, equity: Optional[float] = None) -> float:
        """Re-baseline (no-op while Open)."""
        async with self._lock:
            return await self._set_baseline(equity)

    async def _set_baseline(self, equity: Optional[float] = None) -> float:
        if self.state.tripped:
            return self.state.baseline_equity
        if equity is None:
            equity = await self.fetch_equity()
        self.state.baseline_equity = equity
        self._log_event("circuit_baseline", equity=equity)
        return equity

    async def check(self, equity: Optional[float] = None) -> bool:
        """Evaluate drawdown once. Returns True if this call tripped the breaker."""
        async with self._lock:
            if self.state.tripped:
                return False
            if equity is None:
                equity = await self.fetch_equity()
            else:
                self.last_equity = equity
            if self.state.baseline_equity <= 0:
                await self._set_baseline(equity)
                return False
            dd = self.drawdown(equity)
            if self.metrics is not None:
                self.metrics.record_equity(equity, dd)
            if dd > -self.config.threshold:
                return False
            await self._trip(equity, dd)
        if self.alerts is not None:
            await self.alerts.alert_circuit_breaker(
                True,
                f"Drawdown {dd:.2%} breached {self.config.threshold:.2%}",
                equity=round(equity, 2),
                baseline=round(self.state.baseline_equity, 2),
                resume_in_sec=int(self.config.cooldown_sec),
            )
        return True

    async def _trip(self, equity: float, dd: float) -> None:
        # Caller holds the lock.
        self.state.tripped = True
        self.state.resume_at = self._clock() + self.config.cooldown_sec
        self.trip_count += 1
        self._log_event(
            "circuit_open",
            equity=equity,
            baseline=self.state.baseline_equity,
            drawdown=round(dd, 6),
            cooldown_sec=self.config.cooldown_sec,
            trip_count=self.trip_count,
        )
        if self.metrics is not None:
            self.metrics.record_circuit(True, tripped=True)
        if self._on_trip is not None:
            try:
                await self._on_trip()
            except Exception as exc:
                self._log_event("circuit_cancel_all_failed", error=str(exc))
        self._cancel_resume_timer()
        self._resume_task = asyncio.create_task(self._auto_resume(), name="circuit_resume")

    async def _auto_resume(self) -> None:
        await asyncio.sleep(self.config.cooldown_sec)
        async with self._lock:
            # A manual resume or a newer trip replaced this timer.
            if self._resume_task is not asyncio.current_task():
                return
            self._resume_task = None
            await self._close("auto")
        await self._alert_closed("auto")

    async def manual_resume(self) -> None:
        """Cancel any pending auto-resume, close the breaker and re-baseline now."""
        async with self._lock:
            self._cancel_resume_timer()
            await self._close("manual")
        await self._alert_closed("manual")

    async def _close(self, how: str) -> None:
        # Caller holds the lock.
        self.state.tripped = False
        self.state.resume_at = None
        try:
            await self._set_baseline()
        except VenueError as exc:
            self._log_event("circuit_rebaseline_failed", error=str(exc))
        self._log_event("circuit_closed", how=how, baseline=self.state.baseline_equity)
        if self.metrics is not None:
            self.metrics.record_circuit(False)

    async def _alert_closed(self, how: str) -> None:
        if self.alerts is not None:
            await self.alerts.alert_circuit_breaker(False, f"Resumed ({how})", baseline=round(self.state.baseline_equity, 2))

    def _cancel_resume_timer(self) -> None:
        task, self._resume_task = self._resume_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------ #
    # Task lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="circuit_breaker")
        return self._task

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.config.check_interval_sec)
            try:
                await self.check()
            except Exception as exc:
                self._log_event("circuit_check_error", error=str(exc))

    async def stop(self) -> None:
        self._cancel_resume_timer()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def get_state(self) -> dict:
        return {
            "tripped": self.state.tripped,
            "baseline_equity": self.state.baseline_equity,
            "last_equity": self.last_equity,
            "drawdown": self.drawdown(self.last_equity) if self.last_equity is not None else 0.0,
            "trip_count": self.trip_count,
            "cooldown_remaining": self.cooldown_remaining,
        }
