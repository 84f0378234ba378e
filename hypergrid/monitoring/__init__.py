"""
Monitoring package - metrics, alerts, status replies and operator commands.
"""

from hypergrid.monitoring.alerting import Alert, AlertConfig, AlertManager, AlertSeverity, AlertType
from hypergrid.monitoring.commands import CommandPoller
from hypergrid.monitoring.metrics_rich import RichMetrics

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "CommandPoller",
    "RichMetrics",
]
