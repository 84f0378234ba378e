"""
Infrastructure: logging and async wrappers around venue SDK clients.
"""

from hypergrid.infra.logging_cfg import build_logger, log_event

__all__ = ["build_logger", "log_event"]
