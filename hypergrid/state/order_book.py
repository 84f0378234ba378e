"""
LiveOrderBook: the orders the engine believes it owns, one per ladder slot.

Callers hold ``lock`` around every read-modify-write sequence; the
reconciliation pass, the zombie sweep, fill handling and cancel-all all go
through it so that no slot is ever written by two of them at once.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterator, List, Optional, Tuple

from hypergrid.core.types import LiveOrder


class LiveOrderBook:
    def __init__(self) -> None:
        self._orders: Dict[str, LiveOrder] = {}
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def get(self, slot_key: str) -> Optional[LiveOrder]:
        return self._orders.get(slot_key)

    def put(self, order: LiveOrder) -> None:
        self._orders[order.slot_key] = order

    def pop(self, slot_key: str) -> Optional[LiveOrder]:
        return self._orders.pop(slot_key, None)

    def remove_by_order_id(self, venue_order_id: str) -> Optional[LiveOrder]:
        for key, order in self._orders.items():
            if order.venue_order_id == venue_order_id:
                return self._orders.pop(key)
        return None

    def items(self) -> List[Tuple[str, LiveOrder]]:
        """Copy of the slot map, safe to iterate while mutating."""
        return list(self._orders.items())

    def keys(self) -> List[str]:
        return list(self._orders.keys())

    def clear(self) -> List[LiveOrder]:
        orders = list(self._orders.values())
        self._orders.clear()
        return orders

    def __contains__(self, slot_key: str) -> bool:
        return slot_key in self._orders

    def __len__(self) -> int:
        return len(self._orders)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._orders))
