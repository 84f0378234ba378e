"""
FillDeduplicator: drops fills the venue delivers more than once.

Fill delivery is at-least-once (reconnects replay recent fills), so the fill
worker asks here before touching the position.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from hypergrid.core.types import FillEvent
from hypergrid.core.utils import BoundedSet

log = logging.getLogger("hypergrid")


class FillDeduplicator:
    """
    Bounded set of processed fill keys with FIFO eviction.

    Not locked: only the single fill worker calls it.
    """

    def __init__(self, max_fills: int = 10000, log_event: Optional[Callable[..., None]] = None) -> None:
        self.max_fills = max_fills
        self._seen = BoundedSet(maxlen=max_fills)
        self._log_event = log_event or self._default_log
        self._stats = {"processed": 0, "duplicates": 0, "unkeyed": 0}

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(json.dumps({"event": event, **kwargs}))

    @staticmethod
    def make_fill_key(fill: FillEvent) -> Optional[str]:
        """
        Venue trade id when present, else order id + side + price + size +
        timestamp. Without either there is nothing stable to key on.
        """
        if fill.fill_id:
            return f"fid:{fill.fill_id}"
        if fill.timestamp_ms is not None:
            return f"{fill.venue_order_id}_{fill.side.value}_{fill.price}_{fill.size}_{fill.timestamp_ms}"
        return None

    def check_and_add(self, fill: FillEvent) -> bool:
        """True if the fill is new (and is now recorded), False for a duplicate."""
        key = self.make_fill_key(fill)
        if key is None:
            self._stats["unkeyed"] += 1
            self._stats["processed"] += 1
            return True
        if not self._seen.add(key):
            self._stats["duplicates"] += 1
            self._log_event("fill_dedup_skip", key=key)
            return False
        self._stats["processed"] += 1
        return True

    def contains(self, fill: FillEvent) -> bool:
        key = self.make_fill_key(fill)
        return key is not None and key in self._seen

    def size(self) -> int:
        return len(self._seen)

    def get_stats(self) -> dict:
        return {**self._stats, "current_size": self.size(), "max_size": self.max_fills}
