"""
Process-lifetime state: position / cost basis and the live order map.
"""

from hypergrid.state.cost_basis import apply_signed_fill, reconstruct_entry_price
from hypergrid.state.order_book import LiveOrderBook
from hypergrid.state.position_tracker import CostBasisTracker

__all__ = [
    "apply_signed_fill",
    "reconstruct_entry_price",
    "LiveOrderBook",
    "CostBasisTracker",
]
