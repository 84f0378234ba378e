"""
Strategy package - ladder computation and volatility scaling.
"""

from hypergrid.strategy.grid_calculator import GridBuildResult, GridCalculator, GridConfig, slot_key
from hypergrid.strategy.volatility import VolatilityTracker, volatility_multiplier, wilder_atr

__all__ = [
    "GridBuildResult",
    "GridCalculator",
    "GridConfig",
    "slot_key",
    "VolatilityTracker",
    "volatility_multiplier",
    "wilder_atr",
]
