"""
Core data model and helpers shared by every layer.
"""

from hypergrid.core.types import (
    Candle,
    DesiredOrder,
    FillEvent,
    LiveOrder,
    MarketSnapshot,
    OrderRequest,
    OrderType,
    PositionState,
    Side,
    TradeRecord,
    VenuePosition,
)
from hypergrid.core.utils import BoundedSet, ceil_to_step, floor_to_step, now_ms

__all__ = [
    "Candle",
    "DesiredOrder",
    "FillEvent",
    "LiveOrder",
    "MarketSnapshot",
    "OrderRequest",
    "OrderType",
    "PositionState",
    "Side",
    "TradeRecord",
    "VenuePosition",
    "BoundedSet",
    "ceil_to_step",
    "floor_to_step",
    "now_ms",
]
