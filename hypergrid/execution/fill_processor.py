"""
FillProcessor: the single consumer of the venue's fill queue.

For every fill, in arrival order:
- drop duplicates (FillDeduplicator)
- apply it to the CostBasisTracker
- forget the filled order's slot so the next tick re-quotes it
- account session volume, metrics, notifications
- optionally fire a taker hedge on the hedge venue

Nothing raised while handling one fill stops the worker.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set, TYPE_CHECKING

from hypergrid.core.types import FillEvent, OrderRequest, OrderType, PositionState
from hypergrid.execution.fill_deduplicator import FillDeduplicator
from hypergrid.venue.base import VenueError

if TYPE_CHECKING:
    from hypergrid.config.config import Settings
    from hypergrid.monitoring.alerting import AlertManager
    from hypergrid.monitoring.metrics_rich import RichMetrics
    from hypergrid.state.order_book import LiveOrderBook
    from hypergrid.state.position_tracker import CostBasisTracker
    from hypergrid.venue.base import VenueConnector

log = logging.getLogger("hypergrid")


@dataclass
class HedgeConfig:
    enabled: bool = False
    symbol: str = "BTC"
    threshold_usd: float = 5000.0
    slippage: float = 0.05

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "HedgeConfig":
        return cls(
            enabled=cfg.enable_hedging,
            symbol=cfg.hedge_symbol,
            threshold_usd=cfg.hedge_threshold_usd,
            slippage=cfg.hedge_slippage,
        )


@dataclass
class FillResult:
    fill: FillEvent
    is_duplicate: bool = False
    position: Optional[PositionState] = None
    removed_slot: Optional[str] = None
    hedge_order_id: Optional[str] = None


class FillProcessor:
    """
    Ordered fill worker.

    Holds the tracker lock (inside apply_fill) and then the order book lock;
    never both at once.
    """

    def __init__(
        self,
        symbol: str,
        venue: "VenueConnector",
        tracker: "CostBasisTracker",
        order_book: "LiveOrderBook",
        deduplicator: Optional[FillDeduplicator] = None,
        hedge_venue: Optional["VenueConnector"] = None,
        hedge_config: Optional[HedgeConfig] = None,
        metrics: Optional["RichMetrics"] = None,
        alerts: Optional["AlertManager"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.symbol = symbol
        self.venue = venue
        self.tracker = tracker
        self.order_book = order_book
        self.deduplicator = deduplicator or FillDeduplicator()
        self.hedge_venue = hedge_venue
        self.hedge_config = hedge_config or HedgeConfig()
        self.metrics = metrics
        self.alerts = alerts
        self._log_event = log_event or self._default_log

        self.session_volume_usd: float = 0.0
        self.fill_count: int = 0
        self.last_fill: Optional[FillEvent] = None
        self._task: Optional[asyncio.Task] = None
        self._notify_tasks: Set[asyncio.Task] = set()

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, "coin": self.symbol, **kwargs}))

    # ------------------------------------------------------------------ #
    # Worker lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="fill_worker")
        return self._task

    async def run(self) -> None:
        queue = self.venue.fills
        while True:
            fill = await queue.get()
            try:
                await self.process_fill(fill)
            except Exception as exc:
                self._log_event("fill_processing_error", error=str(exc), fill_id=fill.fill_id)
            finally:
                queue.task_done()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._notify_tasks):
            task.cancel()

    # ------------------------------------------------------------------ #
    # Fill handling
    # ------------------------------------------------------------------ #

    async def process_fill(self, fill: FillEvent) -> FillResult:
        if not self.deduplicator.check_and_add(fill):
            return FillResult(fill=fill, is_duplicate=True)

        state = await self.tracker.apply_fill(fill)
        result = FillResult(fill=fill, position=state)

        if fill.venue_order_id:
            async with self.order_book.lock:
                removed = self.order_book.remove_by_order_id(fill.venue_order_id)
            if removed is not None:
                result.removed_slot = removed.slot_key

        self.session_volume_usd += fill.notional
        self.fill_count += 1
        self.last_fill = fill

        self._log_event(
            "fill",
            side=fill.side.value,
            px=fill.price,
            sz=fill.size,
            oid=fill.venue_order_id,
            slot=result.removed_slot,
            net_size=state.net_size,
            avg_entry=round(state.avg_entry_price, 4),
        )
        if self.metrics is not None:
            self.metrics.record_fill(fill.side.value, fill.notional, state.net_size, state.avg_entry_price)
        if self.alerts is not None:
            self._notify(self.alerts.alert_fill(
                self.symbol, fill.side.value, fill.size, fill.price,
                position=round(state.net_size, 6),
                avg_entry=round(state.avg_entry_price, 2),
            ))

        result.hedge_order_id = await self.maybe_hedge(fill, state)
        return result

    def hedge_request(self, fill: FillEvent) -> OrderRequest:
        """Opposite side, same size, priced through the book by the slippage allowance."""
        cfg = self.hedge_config
        side = fill.side.opposite
        factor = 1 + cfg.slippage if side.sign > 0 else 1 - cfg.slippage
        return OrderRequest(
            symbol=cfg.symbol,
            side=side,
            order_type=OrderType.MARKET,
            price=fill.price * factor,
            size=fill.size,
        )

    def should_hedge(self, fill: FillEvent, state: PositionState) -> bool:
        cfg = self.hedge_config
        if not cfg.enabled or self.hedge_venue is None:
            return False
        return abs(state.net_size * fill.price) > cfg.threshold_usd

    async def maybe_hedge(self, fill: FillEvent, state: PositionState) -> Optional[str]:
        if not self.should_hedge(fill, state):
            return None
        request = self.hedge_request(fill)
        try:
            order_id = await self.hedge_venue.place_order(request)
        except VenueError as exc:
            self._log_event("hedge_failed", side=request.side.value, sz=request.size, error=str(exc))
            if self.metrics is not None:
                self.metrics.record_hedge("failed")
            if self.alerts is not None:
                self._notify(self.alerts.alert_hedge(request.symbol, request.side.value, request.size, ok=False, error=str(exc)))
            return None
        self._log_event("hedge_sent", side=request.side.value, sz=request.size, px=request.price, oid=order_id)
        if self.metrics is not None:
            self.metrics.record_hedge("sent")
        if self.alerts is not None:
            self._notify(self.alerts.alert_hedge(request.symbol, request.side.value, request.size, ok=True))
        return order_id

    def _notify(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    def get_stats(self) -> dict:
        return {
            "fills": self.fill_count,
            "session_volume_usd": self.session_volume_usd,
            "dedup": self.deduplicator.get_stats(),
        }
