"""
Execution package - fill handling, ladder reconciliation, zombie sweeping.
"""

from hypergrid.execution.fill_deduplicator import FillDeduplicator
from hypergrid.execution.fill_processor import FillProcessor, FillResult, HedgeConfig
from hypergrid.execution.reconciler import ReconcileConfig, ReconcileResult, ReconciliationEngine, reprice_reason
from hypergrid.execution.zombie_sweeper import ZombieSweeper

__all__ = [
    "FillDeduplicator",
    "FillProcessor",
    "FillResult",
    "HedgeConfig",
    "ReconcileConfig",
    "ReconcileResult",
    "ReconciliationEngine",
    "reprice_reason",
    "ZombieSweeper",
]
