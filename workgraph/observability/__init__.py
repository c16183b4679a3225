"""Observability module for workgraph."""

from workgraph.observability.logging import (
    JSONFormatter,
    ContextLogger,
    configure_logging,
    configure_from_settings,
    get_logger,
)
from workgraph.observability.metrics import (
    RunMetrics,
    WorkflowMetrics,
    NodeMetrics,
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "ContextLogger",
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    # Metrics
    "RunMetrics",
    "WorkflowMetrics",
    "NodeMetrics",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
