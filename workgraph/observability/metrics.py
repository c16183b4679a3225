"""Metrics collection for workgraph runs."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional


@dataclass
class RunMetrics:
    """Aggregated run metrics."""
    runs_started: int = 0
    runs_completed: int = 0
    runs_failed: int = 0
    node_invocations: int = 0
    node_failures: int = 0
    total_steps: int = 0
    total_node_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Calculate run success rate."""
        total = self.runs_completed + self.runs_failed
        if total == 0:
            return 0.0
        return self.runs_completed / total

    @property
    def avg_node_latency_ms(self) -> float:
        """Calculate average node invocation latency."""
        if self.node_invocations == 0:
            return 0.0
        return self.total_node_latency_ms / self.node_invocations

    @property
    def node_error_rate(self) -> float:
        """Calculate node failure rate."""
        if self.node_invocations == 0:
            return 0.0
        return self.node_failures / self.node_invocations


@dataclass
class WorkflowMetrics:
    """Metrics for a specific workflow."""
    workflow_id: str
    runs: int = 0
    completions: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    total_steps: int = 0

    @property
    def avg_duration_ms(self) -> float:
        """Average run duration."""
        if self.completions == 0:
            return 0.0
        return self.total_duration_ms / self.completions

    @property
    def avg_steps(self) -> float:
        """Average steps per completed run."""
        if self.completions == 0:
            return 0.0
        return self.total_steps / self.completions


@dataclass
class NodeMetrics:
    """Metrics for a node name, across workflows."""
    node_name: str
    invocations: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0

    @property
    def avg_latency_ms(self) -> float:
        if self.invocations == 0:
            return 0.0
        return self.total_latency_ms / self.invocations


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Collects and aggregates metrics for workflow runs and node invocations.
    """

    def __init__(self):
        self._lock = Lock()
        self._metrics = RunMetrics()
        self._workflow_metrics: Dict[str, WorkflowMetrics] = {}
        self._node_metrics: Dict[str, NodeMetrics] = {}
        self._started_at = datetime.now(timezone.utc)

    def record_run_start(self, workflow_id: str) -> None:
        """Record a run starting."""
        with self._lock:
            self._metrics.runs_started += 1

            if workflow_id not in self._workflow_metrics:
                self._workflow_metrics[workflow_id] = WorkflowMetrics(workflow_id)
            self._workflow_metrics[workflow_id].runs += 1

    def record_run_complete(
        self,
        workflow_id: str,
        duration_ms: float,
        steps: int,
    ) -> None:
        """Record a run completing successfully."""
        with self._lock:
            self._metrics.runs_completed += 1
            self._metrics.total_steps += steps

            if workflow_id in self._workflow_metrics:
                wm = self._workflow_metrics[workflow_id]
                wm.completions += 1
                wm.total_duration_ms += duration_ms
                wm.total_steps += steps

    def record_run_failed(self, workflow_id: str) -> None:
        """Record a run failing."""
        with self._lock:
            self._metrics.runs_failed += 1

            if workflow_id in self._workflow_metrics:
                self._workflow_metrics[workflow_id].failures += 1

    def record_node_invocation(
        self,
        node_name: str,
        duration_ms: float,
        failed: bool = False,
    ) -> None:
        """Record a node invocation."""
        with self._lock:
            self._metrics.node_invocations += 1
            self._metrics.total_node_latency_ms += duration_ms

            nm = self._node_metrics.get(node_name)
            if nm is None:
                nm = self._node_metrics[node_name] = NodeMetrics(node_name)
            nm.invocations += 1
            nm.total_latency_ms += duration_ms

            if failed:
                self._metrics.node_failures += 1
                nm.failures += 1

    def get_metrics(self) -> RunMetrics:
        """Get current metrics snapshot."""
        with self._lock:
            return replace(self._metrics)

    def get_workflow_metrics(self, workflow_id: str) -> Optional[WorkflowMetrics]:
        """Get metrics for a specific workflow."""
        with self._lock:
            wm = self._workflow_metrics.get(workflow_id)
            return replace(wm) if wm else None

    def get_all_workflow_metrics(self) -> List[WorkflowMetrics]:
        """Get metrics for all workflows."""
        with self._lock:
            return [replace(wm) for wm in self._workflow_metrics.values()]

    def get_node_metrics(self, node_name: str) -> Optional[NodeMetrics]:
        """Get metrics for a node name."""
        with self._lock:
            nm = self._node_metrics.get(node_name)
            return replace(nm) if nm else None

    def uptime_seconds(self) -> float:
        """Get collector uptime in seconds."""
        return (datetime.now(timezone.utc) - self._started_at).total_seconds()

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        with self._lock:
            self._metrics = RunMetrics()
            self._workflow_metrics.clear()
            self._node_metrics.clear()
            self._started_at = datetime.now(timezone.utc)


# Global metrics collector instance
_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (for testing)."""
    global _collector
    _collector = None
