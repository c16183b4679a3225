"""Execution state of a single workflow run.

Tracks run status, the step counter and the ordered history of every node
invocation, including repeated visits in cyclic graphs. The ResultStore only
keeps the last output per node; node_history keeps every attempt.

INVARIANTS:
- State mutations are performed only by GraphExecutor
- node_history is append-only
- A RunState belongs to exactly one run and is never shared
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    """Status of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"  # Ready queue drained
    FAILED = "failed"        # Run aborted with an error


class NodeExecutionStatus(str, Enum):
    """Status of a single node invocation."""
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class NodeExecution:
    """Record of a single node invocation."""
    step: int
    node_name: str
    status: NodeExecutionStatus
    duration_ms: float
    timestamp: datetime
    outcome: Any = None  # routing value for decision nodes
    activated: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "step": self.step,
            "node_name": self.node_name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
            "outcome": self.outcome,
            "activated": list(self.activated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeExecution":
        """Deserialize from dict."""
        return cls(
            step=data["step"],
            node_name=data["node_name"],
            status=NodeExecutionStatus(data["status"]),
            duration_ms=data.get("duration_ms", 0.0),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            outcome=data.get("outcome"),
            activated=data.get("activated", []),
        )


@dataclass
class RunState:
    """State of one workflow run."""
    workflow_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    steps: int = 0
    node_history: List[NodeExecution] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = RunStatus.RUNNING
        self.started_at = _utcnow()

    def next_step(self) -> int:
        """Advance and return the step counter."""
        self.steps += 1
        return self.steps

    def record_execution(
        self,
        step: int,
        node_name: str,
        status: NodeExecutionStatus,
        duration_ms: float,
        outcome: Any = None,
        activated: Optional[List[str]] = None,
    ) -> NodeExecution:
        """Append a node invocation to the history."""
        execution = NodeExecution(
            step=step,
            node_name=node_name,
            status=status,
            duration_ms=duration_ms,
            timestamp=_utcnow(),
            outcome=outcome,
            activated=list(activated or []),
        )
        self.node_history.append(execution)
        return execution

    def set_completed(self) -> None:
        self.status = RunStatus.COMPLETED
        self.finished_at = _utcnow()

    def set_failed(self, reason: str) -> None:
        """Set state to failed.

        Args:
            reason: Failure reason
        """
        self.status = RunStatus.FAILED
        self.error = reason
        self.finished_at = _utcnow()

    def executions_of(self, node_name: str) -> List[NodeExecution]:
        """Every recorded invocation of a node, in order."""
        return [e for e in self.node_history if e.node_name == node_name]

    def visit_count(self, node_name: str) -> int:
        return len(self.executions_of(node_name))

    @property
    def duration_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at or _utcnow()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "steps": self.steps,
            "node_history": [e.to_dict() for e in self.node_history],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        """Deserialize from dict."""
        started_at = data.get("started_at")
        finished_at = data.get("finished_at")
        return cls(
            workflow_id=data["workflow_id"],
            run_id=data["run_id"],
            status=RunStatus(data["status"]),
            steps=data.get("steps", 0),
            node_history=[
                NodeExecution.from_dict(e) for e in data.get("node_history", [])
            ],
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            finished_at=datetime.fromisoformat(finished_at) if finished_at else None,
            error=data.get("error"),
        )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)
