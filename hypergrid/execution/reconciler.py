"""
ReconciliationEngine: diff the desired ladder against the resting orders.

One pass, under the order book lock:
- desired slot with no live order  -> place
- desired slot with a live order   -> keep, or cancel-and-replace when the
                                      size drifted, the price left the
                                      deadband, or the order went stale
- live slot with no desired order  -> cancel and forget

Venue failures are counted and logged per slot; they never abort the pass.
Running the pass twice with the same desired ladder and no market movement
touches the venue only the first time.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from hypergrid.core.types import DesiredOrder, LiveOrder, OrderRequest, OrderType, Side
from hypergrid.core.utils import now_ms
from hypergrid.venue.base import OrderRejected, VenueError

if TYPE_CHECKING:
    from hypergrid.config.config import Settings
    from hypergrid.monitoring.metrics_rich import RichMetrics
    from hypergrid.state.order_book import LiveOrderBook
    from hypergrid.venue.base import VenueConnector

log = logging.getLogger("hypergrid")

REPRICE_ABSOLUTE = "absolute"
REPRICE_CHASE = "chase"


@dataclass
class ReconcileConfig:
    symbol: str = "BTC"
    reprice_mode: str = REPRICE_ABSOLUTE
    deadband: float = 30.0
    safety_distance: float = 150.0
    size_tolerance: float = 0.05
    stale_order_ms: int = 300_000
    order_type: OrderType = OrderType.POST_ONLY

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "ReconcileConfig":
        return cls(
            symbol=cfg.symbol,
            reprice_mode=cfg.reprice_mode,
            deadband=cfg.reprice_deadband,
            safety_distance=cfg.reprice_safety_distance,
            size_tolerance=cfg.reprice_size_tolerance,
            stale_order_ms=cfg.stale_order_ms,
        )


@dataclass
class ReconcileResult:
    placed: int = 0
    repriced: int = 0
    cancelled: int = 0
    kept: int = 0
    failures: int = 0
    reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def venue_calls(self) -> int:
        return self.placed + self.repriced + self.cancelled + self.failures

    def to_dict(self) -> dict:
        return {
            "placed": self.placed,
            "repriced": self.repriced,
            "cancelled": self.cancelled,
            "kept": self.kept,
            "failures": self.failures,
        }


def reprice_reason(live: LiveOrder, desired: DesiredOrder, cfg: ReconcileConfig, at_ms: Optional[int] = None) -> Optional[str]:
    """
    Why ``live`` should be replaced by ``desired``, or None to keep it.

    Checked in order: size drift, price deadband, staleness.
    """
    if desired.size > 0 and abs(live.size - desired.size) / desired.size > cfg.size_tolerance:
        return "size"

    delta = desired.price - live.price
    if cfg.reprice_mode == REPRICE_CHASE:
        # Chase only toward the touch; fall back on a wide safety band.
        if abs(delta) >= cfg.safety_distance:
            return "safety"
        if desired.side is Side.BUY and delta >= cfg.deadband:
            return "price"
        if desired.side is Side.SELL and -delta >= cfg.deadband:
            return "price"
    elif abs(delta) >= cfg.deadband:
        return "price"

    if live.age_ms(at_ms) > cfg.stale_order_ms:
        return "stale"
    return None


class ReconciliationEngine:
    """
    Owns every venue write the tick makes for the ladder.

    Callers must not hold ``order_book.lock``; reconcile() takes it.
    """

    def __init__(
        self,
        venue: "VenueConnector",
        order_book: "LiveOrderBook",
        config: Optional[ReconcileConfig] = None,
        metrics: Optional["RichMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.venue = venue
        self.order_book = order_book
        self.config = config or ReconcileConfig()
        self.metrics = metrics
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, "coin": self.config.symbol, **kwargs}))

    async def reconcile(self, desired: Dict[str, DesiredOrder]) -> ReconcileResult:
        result = ReconcileResult()
        async with self.order_book.lock:
            at = now_ms()
            for key, target in desired.items():
                live = self.order_book.get(key)
                if live is None:
                    if await self._place(target):
                        result.placed += 1
                    else:
                        result.failures += 1
                    continue

                reason = reprice_reason(live, target, self.config, at)
                if reason is None:
                    result.kept += 1
                    continue
                result.reasons[key] = reason
                if await self._replace(live, target, reason):
                    result.repriced += 1
                else:
                    result.failures += 1

            for key in self.order_book.keys():
                if key in desired:
                    continue
                live = self.order_book.pop(key)
                if live is None:
                    continue
                if await self._cancel(live, "pruned"):
                    result.cancelled += 1
                else:
                    result.failures += 1

        if result.venue_calls:
            self._log_event("reconcile", **result.to_dict())
        return result

    async def cancel_all(self, reason: str = "cancel_all") -> int:
        """Cancel every tracked order and clear the map. Returns the count attempted."""
        async with self.order_book.lock:
            return await self.cancel_all_locked(reason)

    async def cancel_all_locked(self, reason: str = "cancel_all") -> int:
        orders = self.order_book.clear()
        for order in orders:
            await self._cancel(order, reason)
        if orders:
            self._log_event("cancel_all", reason=reason, count=len(orders))
        return len(orders)

    # ------------------------------------------------------------------ #
    # Venue operations (order book lock held by the caller)
    # ------------------------------------------------------------------ #

    def _request(self, target: DesiredOrder) -> OrderRequest:
        return OrderRequest(
            symbol=self.config.symbol,
            side=target.side,
            order_type=self.config.order_type,
            price=target.price,
            size=target.size,
        )

    async def _place(self, target: DesiredOrder) -> bool:
        try:
            order_id = await self.venue.place_order(self._request(target))
        except OrderRejected as exc:
            self._log_event("order_rejected", slot=target.slot_key, px=target.price, sz=target.size, reason=exc.reason)
            if self.metrics is not None:
                self.metrics.record_rejected()
            return False
        except VenueError as exc:
            self._log_event("order_place_failed", slot=target.slot_key, px=target.price, sz=target.size, error=str(exc))
            if self.metrics is not None:
                self.metrics.record_rejected()
            return False
        self.order_book.put(LiveOrder(
            slot_key=target.slot_key,
            venue_order_id=order_id,
            price=target.price,
            size=target.size,
        ))
        if self.metrics is not None:
            self.metrics.record_placed(target.side.value)
        return True

    async def _cancel(self, live: LiveOrder, reason: str) -> bool:
        try:
            ok = await self.venue.cancel_order(self.config.symbol, live.venue_order_id)
        except VenueError as exc:
            self._log_event("order_cancel_failed", slot=live.slot_key, oid=live.venue_order_id, reason=reason, error=str(exc))
            return False
        if not ok:
            self._log_event("order_cancel_failed", slot=live.slot_key, oid=live.venue_order_id, reason=reason)
            return False
        if self.metrics is not None:
            self.metrics.record_cancelled(reason)
        return True

    async def _replace(self, live: LiveOrder, target: DesiredOrder, reason: str) -> bool:
        # A failed cancel does not block the new placement; the zombie
        # sweeper and staleness refresh bound any orphan it leaves behind.
        await self._cancel(live, f"reprice_{reason}")
        self.order_book.pop(live.slot_key)
        self._log_event(
            "order_reprice",
            slot=target.slot_key,
            reason=reason,
            from_px=live.price,
            to_px=target.price,
            from_sz=live.size,
            to_sz=target.size,
        )
        if not await self._place(target):
            return False
        if self.metrics is not None:
            self.metrics.record_repriced(reason)
        return True

    def snapshot(self) -> List[dict]:
        return [
            {"slot": key, "oid": o.venue_order_id, "px": o.price, "sz": o.size, "age_ms": o.age_ms()}
            for key, o in sorted(self.order_book.items())
        ]
