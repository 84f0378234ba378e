"""
Venue capability set consumed by the engine.

The engine never talks to a wire protocol directly: it depends on
VenueConnector for order placement, cancellation, account queries and the
ordered fill stream, and on VolatilitySource for candles.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from hypergrid.core.types import (
    Candle,
    FillEvent,
    MarketSnapshot,
    OrderRequest,
    TradeRecord,
    VenuePosition,
)

log = logging.getLogger("hypergrid")

T = TypeVar("T")


class VenueError(Exception):
    """Base class for venue failures that a tick can survive."""


class VenueTimeout(VenueError):
    """A venue call did not complete within its deadline."""


class OrderRejected(VenueError):
    """The venue refused an order; reason is kept verbatim for logs."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StartupError(Exception):
    """Fatal: the engine cannot authenticate or connect."""


class VenueConnector(abc.ABC):
    """
    Abstract perpetual-futures venue.

    Implementations push confirmed fills onto ``fills`` in the order the venue
    reports them. Delivery is at-least-once; consumers de-duplicate.
    """

    name: str = "venue"

    def __init__(self, timeout_sec: float = 5.0) -> None:
        self.timeout_sec = timeout_sec
        self.fills: "asyncio.Queue[FillEvent]" = asyncio.Queue()
        self.is_connected = False

    @abc.abstractmethod
    async def connect(self) -> bool:
        ...

    @abc.abstractmethod
    async def get_mid_price(self, symbol: str) -> float:
        ...

    @abc.abstractmethod
    async def get_order_book_snapshot(self, symbol: str) -> MarketSnapshot:
        ...

    @abc.abstractmethod
    async def place_order(self, order: OrderRequest) -> str:
        """Return the venue order id or raise OrderRejected."""

    @abc.abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        """Cancel an order. Cancelling an order that is already gone is not an error."""

    @abc.abstractmethod
    async def get_position(self, symbol: str) -> Optional[VenuePosition]:
        ...

    @abc.abstractmethod
    async def get_balance(self) -> float:
        ...

    async def get_trade_history(self, symbol: str, limit: int = 500) -> List[TradeRecord]:
        """Settled trades, newest first. Venues without a history feed return []."""
        return []

    async def close(self) -> None:
        self.is_connected = False

    def validate_order(self, order: OrderRequest) -> None:
        if order.size <= 0:
            raise OrderRejected("Order size must be positive")
        if order.price <= 0:
            raise OrderRejected("Order price must be positive")

    async def call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run one venue operation under the configured deadline.

        Timeouts become VenueTimeout; OrderRejected passes through untouched;
        anything else is logged and re-raised as VenueError.
        """
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_sec)
        except asyncio.TimeoutError as exc:
            self._log_failure(operation, "timeout")
            raise VenueTimeout(f"{operation} timed out after {self.timeout_sec}s") from exc
        except VenueError:
            raise
        except Exception as exc:
            self._log_failure(operation, str(exc))
            raise VenueError(f"{operation} failed: {exc}") from exc

    def _log_failure(self, operation: str, error: Any) -> None:
        log.error(json.dumps({"event": "venue_call_failed", "venue": self.name, "op": operation, "error": str(error)}))


class VolatilitySource(abc.ABC):
    @abc.abstractmethod
    async def get_candles(self, symbol: str, interval: str, count: int) -> List[Candle]:
        """Recent candles, oldest first."""
