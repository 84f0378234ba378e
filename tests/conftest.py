"""
Pytest configuration and fixtures.

FakeVenue is a scripted in-memory venue: it records every placement and
cancellation and can be told to fail either.
"""

import dataclasses
import os
from typing import List, Optional

import pytest

from hypergrid.config.config import Settings
from hypergrid.core.types import Candle, MarketSnapshot, OrderRequest, TradeRecord, VenuePosition
from hypergrid.venue.base import OrderRejected, VenueConnector, VenueError, VolatilitySource

# Defaults only; a developer's shell or .env must not leak into tests.
for _key in [k for k in os.environ if k.startswith("HG_")]:
    os.environ.pop(_key)


def make_settings(**overrides) -> Settings:
    return dataclasses.replace(Settings.load(), **overrides)


class FakeVenue(VenueConnector, VolatilitySource):
    name = "fake"

    def __init__(
        self,
        bid: float = 99_990.0,
        ask: float = 100_010.0,
        equity: float = 1000.0,
        position: Optional[VenuePosition] = None,
        trades: Optional[List[TradeRecord]] = None,
        candles: Optional[List[Candle]] = None,
    ) -> None:
        super().__init__(timeout_sec=1.0)
        self.bid = bid
        self.ask = ask
        self.equity = equity
        self.position = position
        self.trades = trades or []
        self.candles = candles or []
        self.placed: List[OrderRequest] = []
        self.cancelled: List[str] = []
        self.reject_reason: Optional[str] = None
        self.fail_place = False
        self.fail_cancel = False
        self.fail_balance = False
        self.connect_ok = True
        self.closed = False
        self._next_id = 0

    async def connect(self) -> bool:
        self.is_connected = self.connect_ok
        return self.connect_ok

    async def get_mid_price(self, symbol: str) -> float:
        return (self.bid + self.ask) / 2

    async def get_order_book_snapshot(self, symbol: str) -> MarketSnapshot:
        return MarketSnapshot.from_book(symbol, self.bid, self.ask)

    async def place_order(self, order: OrderRequest) -> str:
        self.validate_order(order)
        if self.reject_reason:
            raise OrderRejected(self.reject_reason)
        if self.fail_place:
            raise VenueError("place failed")
        self._next_id += 1
        self.placed.append(order)
        return str(self._next_id)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        if self.fail_cancel:
            raise VenueError("cancel failed")
        self.cancelled.append(order_id)
        return True

    async def get_position(self, symbol: str) -> Optional[VenuePosition]:
        return self.position

    async def get_balance(self) -> float:
        if self.fail_balance:
            raise VenueError("balance unavailable")
        return self.equity

    async def get_trade_history(self, symbol: str, limit: int = 500) -> List[TradeRecord]:
        return list(self.trades)[:limit]

    async def get_candles(self, symbol: str, interval: str, count: int) -> List[Candle]:
        return list(self.candles)[-count:]

    async def close(self) -> None:
        await super().close()
        self.closed = True


@pytest.fixture
def venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def settings() -> Settings:
    return make_settings()
