"""
Orchestrator package - the control loop.
"""

from hypergrid.orchestrator.engine import Engine, TickResult

__all__ = ["Engine", "TickResult"]
