"""Result store for a single workflow run.

Holds the most recent output of every node that has completed, iterated in
first-completion order. A node that runs again overwrites its value but
keeps its original position.
"""

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass
class NodeFailure:
    """Recorded in place of an output when a node's executor failed."""
    node_name: str
    error_type: str
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, node_name: str, exc: BaseException) -> "NodeFailure":
        """Create a failure record from a raised exception."""
        return cls(
            node_name=node_name,
            error_type=type(exc).__name__,
            message=str(exc),
            exception=exc,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (the exception object is dropped)."""
        return {
            "node_name": self.node_name,
            "error_type": self.error_type,
            "message": self.message,
        }


class ResultStore:
    """Keyed, ordered collection of per-node outputs.

    Writes are serialized with a lock so that concurrent runs of independent
    branches can record into the same store.
    """

    def __init__(self):
        self._lock = Lock()
        self._results: Dict[str, Any] = {}

    def record(self, name: str, output: Any) -> None:
        """Record a node's output, replacing any earlier value."""
        with self._lock:
            self._results[name] = output

    def get(self, name: str, default: Any = None) -> Any:
        """Get a node's most recent output."""
        with self._lock:
            return self._results.get(name, default)

    def contains(self, name: str) -> bool:
        """Check whether a node has produced a result."""
        with self._lock:
            return name in self._results

    def all(self) -> List[Tuple[str, Any]]:
        """All (name, output) pairs in first-completion order."""
        with self._lock:
            return list(self._results.items())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._results.keys())

    def failures(self) -> Dict[str, NodeFailure]:
        """Entries that hold a NodeFailure."""
        with self._lock:
            return {
                name: value
                for name, value in self._results.items()
                if isinstance(value, NodeFailure)
            }

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict copy, preserving order."""
        with self._lock:
            return dict(self._results)

    def __contains__(self, name: object) -> bool:
        return self.contains(name)  # type: ignore[arg-type]

    def __getitem__(self, name: str) -> Any:
        with self._lock:
            return self._results[name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResultStore):
            return self.all() == other.all()
        return NotImplemented

    def __repr__(self) -> str:
        return f"ResultStore({self.to_dict()!r})"
