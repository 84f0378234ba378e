"""
CostBasisTracker: net position and weighted average entry under one lock.

Fills are applied in arrival order by the fill worker; the grid generator and
the circuit breaker read consistent snapshots through the same lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

from hypergrid.core.types import FillEvent, PositionState
from hypergrid.state.cost_basis import apply_signed_fill, reconstruct_entry_price

log = logging.getLogger("hypergrid")


class CostBasisTracker:
    """
    Owner of PositionState.

    Mutated only by apply_fill() and the one-time bootstrap_from_venue().
    """

    def __init__(self, log_event: Optional[Callable[..., None]] = None) -> None:
        self._state = PositionState()
        self._lock = asyncio.Lock()
        self._log_event = log_event or self._default_log
        self._bootstrapped = False

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    @property
    def state(self) -> PositionState:
        """Last committed state (unlocked; PositionState is immutable)."""
        return self._state

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def snapshot(self) -> PositionState:
        async with self._lock:
            return self._state

    async def apply_fill(self, fill: FillEvent) -> PositionState:
        async with self._lock:
            prev = self._state
            self._state = apply_signed_fill(prev, fill.signed_size, fill.price)
            return self._state

    async def seed(self, net_size: float, avg_entry_price: float) -> PositionState:
        async with self._lock:
            if net_size == 0:
                self._state = PositionState()
            else:
                entry = max(0.0, avg_entry_price)
                self._state = PositionState(
                    net_size=net_size,
                    avg_entry_price=entry,
                    cost_basis=abs(net_size) * entry,
                )
            return self._state

    async def bootstrap_from_venue(
        self,
        venue,
        symbol: str,
        source: str = "venue",
        history_limit: int = 500,
    ) -> PositionState:
        """
        Seed the position from the venue once at startup.

        Uses the venue-reported entry price when available (and source is
        "venue"); otherwise rebuilds it from settled trade history.
        """
        if self._bootstrapped:
            return self._state
        self._bootstrapped = True

        position = await venue.get_position(symbol)
        if position is None or position.size == 0:
            self._log_event("position_bootstrap", status="flat", symbol=symbol)
            return await self.seed(0.0, 0.0)

        entry = position.entry_price or 0.0
        method = "venue"
        if source != "venue" or entry <= 0:
            records = await venue.get_trade_history(symbol, history_limit)
            entry = reconstruct_entry_price(position.size, records)
            method = "history"
            if entry <= 0:
                self._log_event("position_bootstrap_entry_unknown", symbol=symbol, size=position.size, trades=len(records))

        state = await self.seed(position.size, entry)
        self._log_event(
            "position_bootstrap",
            status="loaded",
            method=method,
            symbol=symbol,
            side="long" if position.size > 0 else "short",
            size=abs(position.size),
            avg_entry=state.avg_entry_price,
        )
        return state

    def get_state(self) -> dict:
        s = self._state
        return {
            "net_size": s.net_size,
            "avg_entry_price": s.avg_entry_price,
            "cost_basis": s.cost_basis,
        }
