"""
Venue adapters and the capability interface the engine depends on.
"""

from hypergrid.venue.base import (
    OrderRejected,
    StartupError,
    VenueConnector,
    VenueError,
    VenueTimeout,
    VolatilitySource,
)

__all__ = [
    "OrderRejected",
    "StartupError",
    "VenueConnector",
    "VenueError",
    "VenueTimeout",
    "VolatilitySource",
]
