"""
Shared data model for the market-making loop.

Plain dataclasses passed between the venue adapter, the cost-basis tracker,
the grid generator and the reconciliation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from hypergrid.core.utils import now_ms


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is Side.BUY else -1

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @classmethod
    def parse(cls, raw: str) -> "Side":
        """Accept 'buy'/'sell', 'B'/'A' (Hyperliquid) and 'bid'/'ask'."""
        value = str(raw).strip().lower()
        if value.startswith("b"):
            return cls.BUY
        if value.startswith("s") or value.startswith("a"):
            return cls.SELL
        raise ValueError(f"unknown side: {raw!r}")


class OrderType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"
    POST_ONLY = "post_only"


@dataclass
class MarketSnapshot:
    symbol: str
    best_bid: float
    best_ask: float
    mid_price: float

    @classmethod
    def from_book(cls, symbol: str, bid: float, ask: float) -> "MarketSnapshot":
        if bid > 0 and ask > 0:
            return cls(symbol=symbol, best_bid=bid, best_ask=ask, mid_price=(bid + ask) / 2)
        return cls(symbol=symbol, best_bid=bid, best_ask=ask, mid_price=0.0)

    @property
    def is_empty(self) -> bool:
        return self.mid_price <= 0


@dataclass(frozen=True)
class PositionState:
    """Signed net size with its weighted average entry and committed capital."""
    net_size: float = 0.0
    avg_entry_price: float = 0.0
    cost_basis: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.net_size == 0

    def notional(self, price: float) -> float:
        return self.net_size * price


@dataclass(frozen=True)
class DesiredOrder:
    slot_key: str
    side: Side
    price: float
    size: float

    @property
    def notional(self) -> float:
        return self.price * self.size


@dataclass
class LiveOrder:
    slot_key: str
    venue_order_id: str
    price: float
    size: float
    placed_at: int = field(default_factory=now_ms)

    def age_ms(self, at_ms: Optional[int] = None) -> int:
        return (at_ms if at_ms is not None else now_ms()) - self.placed_at


@dataclass(frozen=True)
class FillEvent:
    side: Side
    price: float
    size: float
    venue_order_id: Optional[str] = None
    fill_id: Optional[str] = None
    timestamp_ms: Optional[int] = None

    @property
    def signed_size(self) -> float:
        return self.size * self.side.sign

    @property
    def notional(self) -> float:
        return self.size * self.price


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    order_type: OrderType
    price: float
    size: float


@dataclass(frozen=True)
class VenuePosition:
    symbol: str
    size: float
    entry_price: Optional[float] = None


@dataclass(frozen=True)
class TradeRecord:
    """
    One settled trade as reported by the venue's history feed.

    post_balance is the signed position right after the trade and
    signed_amount the signed base quantity of the trade itself.
    """
    post_balance: float
    signed_amount: float
    limit_price: Optional[float] = None
    base_amount: float = 0.0
    quote_amount: float = 0.0
    timestamp_ms: int = 0

    @property
    def pre_balance(self) -> float:
        return self.post_balance - self.signed_amount

    @property
    def price(self) -> float:
        if self.limit_price:
            return abs(self.limit_price)
        if self.base_amount:
            return abs(self.quote_amount / self.base_amount)
        return 0.0


@dataclass(frozen=True)
class Candle:
    high: float
    low: float
    close: float
