"""
hypergrid - inventory-aware grid market maker for perpetual futures.
"""

__version__ = "0.3.0"
