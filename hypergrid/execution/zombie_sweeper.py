"""
ZombieSweeper: forget orders that have rested far longer than any reprice
cycle allows. An order that old is most likely gone from the venue (filled
while the feed was down, or cancelled out from under us).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Optional, TYPE_CHECKING

from hypergrid.core.utils import now_ms
from hypergrid.venue.base import VenueError

if TYPE_CHECKING:
    from hypergrid.monitoring.metrics_rich import RichMetrics
    from hypergrid.state.order_book import LiveOrderBook
    from hypergrid.venue.base import VenueConnector

log = logging.getLogger("hypergrid")


class ZombieSweeper:
    def __init__(
        self,
        venue: "VenueConnector",
        order_book: "LiveOrderBook",
        symbol: str,
        max_age_ms: int = 900_000,
        metrics: Optional["RichMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.venue = venue
        self.order_book = order_book
        self.symbol = symbol
        self.max_age_ms = max_age_ms
        self.metrics = metrics
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.warning(json.dumps({"event": event, "coin": self.symbol, **kwargs}))

    async def sweep(self, at_ms: Optional[int] = None) -> List[str]:
        """Cancel (best effort) and drop every order older than max_age_ms. Returns swept slots."""
        at = at_ms if at_ms is not None else now_ms()
        swept: List[str] = []
        async with self.order_book.lock:
            for key, order in self.order_book.items():
                age = order.age_ms(at)
                if age <= self.max_age_ms:
                    continue
                cancelled = False
                try:
                    cancelled = await self.venue.cancel_order(self.symbol, order.venue_order_id)
                except VenueError as exc:
                    self._log_event("zombie_cancel_failed", slot=key, oid=order.venue_order_id, error=str(exc))
                self.order_book.pop(key)
                swept.append(key)
                self._log_event("zombie_swept", slot=key, oid=order.venue_order_id, age_ms=age, cancelled=bool(cancelled))
        if swept and self.metrics is not None:
            self.metrics.record_zombies(len(swept))
        return swept
