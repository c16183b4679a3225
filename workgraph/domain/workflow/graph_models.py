"""Typed models for task-graph workflows.

A WorkflowGraph is a flat registry of TaskNodes keyed by name. Edges are
expressed per node, either as an ordered list of static successors or as a
decision table that maps an outcome to the successors it activates.

INVARIANTS:
- Node names are unique within a graph
- Every successor, decision target and context input names a node in the graph
- A node uses static successors or a decision table, never both
- At least one node is a start node
- A graph is immutable once constructed and safe to share across runs
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from workgraph.domain.workflow.errors import (
    AmbiguousTransitionError,
    DanglingReferenceError,
    DuplicateNodeError,
    NoStartNodeError,
)


class _NoSuccessor:
    """Marker for a decision outcome that terminates its branch."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_SUCCESSOR"

    def __bool__(self) -> bool:
        return False


NO_SUCCESSOR = _NoSuccessor()

# Outcome label a decision node routes on when its executor failed
FAILED_OUTCOME = "failed"


def _normalize_targets(value: Any) -> Tuple[str, ...]:
    """Normalize a decision table value to a tuple of successor names.

    NO_SUCCESSOR, None, "" and empty sequences all mean "terminate".
    """
    if value is NO_SUCCESSOR or value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, (list, tuple)):
        for target in value:
            if not isinstance(target, str) or not target:
                raise TypeError(
                    f"Decision targets must be non-empty strings, got {target!r}"
                )
        return tuple(value)
    raise TypeError(f"Invalid decision table value: {value!r}")


class DecisionTable:
    """Closed mapping from outcome value to successor names.

    Outcomes are compared by value equality with the raw executor output.
    """

    def __init__(self, table: Mapping[Any, Any]):
        self._table: Dict[Any, Tuple[str, ...]] = {
            outcome: _normalize_targets(targets)
            for outcome, targets in table.items()
        }

    @property
    def outcomes(self) -> frozenset:
        """The closed set of outcomes this table accepts."""
        return frozenset(self._table)

    def resolve(self, outcome: Any) -> Tuple[str, ...]:
        """Return the successors for an outcome.

        Raises:
            KeyError: If the outcome is not in the table (unhashable values
                never match)
        """
        try:
            return self._table[outcome]
        except TypeError:
            raise KeyError(outcome)

    def has_outcome(self, outcome: Any) -> bool:
        try:
            return outcome in self._table
        except TypeError:
            return False

    def targets(self) -> List[str]:
        """Every successor name referenced by the table, first-seen order."""
        seen: List[str] = []
        for names in self._table.values():
            for name in names:
                if name not in seen:
                    seen.append(name)
        return seen

    def items(self):
        return self._table.items()

    def to_dict(self) -> Dict[Any, Any]:
        """Serialize, writing terminating outcomes as empty strings."""
        return {
            outcome: list(names) if names else ""
            for outcome, names in self._table.items()
        }

    def __len__(self) -> int:
        return len(self._table)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecisionTable):
            return NotImplemented
        return self._table == other._table

    def __hash__(self) -> int:
        return hash(frozenset(self._table.items()))

    def __repr__(self) -> str:
        return f"DecisionTable({self._table!r})"


@dataclass(frozen=True)
class TaskNode:
    """A named unit of work bound to an executor."""
    name: str
    description: str = ""
    expected_output: str = ""
    executor: Any = None  # object with invoke(), callable, str reference or None
    is_start: bool = False
    static_successors: Tuple[str, ...] = ()
    decision_table: Optional[DecisionTable] = None
    context_inputs: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ValueError(f"Task node name must be a non-empty string: {self.name!r}")
        object.__setattr__(self, "static_successors", tuple(self.static_successors))
        object.__setattr__(self, "context_inputs", tuple(self.context_inputs))
        if self.decision_table is not None and not isinstance(
            self.decision_table, DecisionTable
        ):
            object.__setattr__(
                self, "decision_table", DecisionTable(self.decision_table)
            )

    @property
    def is_decision(self) -> bool:
        return self.decision_table is not None

    def successors_for(self, outcome: Any = None) -> Tuple[str, ...]:
        """Successors activated when this node completes with ``outcome``.

        Raises:
            KeyError: If this is a decision node and the outcome is unknown
        """
        if self.decision_table is not None:
            return self.decision_table.resolve(outcome)
        return self.static_successors

    def referenced_names(self) -> List[str]:
        """Every node name this node points at (successors and context)."""
        names = list(self.static_successors)
        if self.decision_table is not None:
            names.extend(self.decision_table.targets())
        names.extend(self.context_inputs)
        return names


@dataclass(frozen=True)
class WorkflowGraph:
    """A validated, immutable collection of task nodes.

    Validation happens in the constructor; a WorkflowGraph instance is
    always well-formed.
    """
    nodes: Tuple[TaskNode, ...]
    workflow_id: str = "workflow"
    version: str = "1.0.0"
    description: str = ""
    _by_name: Mapping[str, TaskNode] = field(
        init=False, repr=False, compare=False, default=None
    )

    def __post_init__(self):
        nodes = tuple(self.nodes)
        object.__setattr__(self, "nodes", nodes)

        by_name: Dict[str, TaskNode] = {}
        for node in nodes:
            if node.name in by_name:
                raise DuplicateNodeError(node.name)
            by_name[node.name] = node

        for node in nodes:
            if node.static_successors and node.decision_table is not None:
                raise AmbiguousTransitionError(node.name)

        for node in nodes:
            for referenced in node.referenced_names():
                if referenced not in by_name:
                    raise DanglingReferenceError(referenced, node.name)

        if not any(node.is_start for node in nodes):
            raise NoStartNodeError(self.workflow_id)

        object.__setattr__(self, "_by_name", MappingProxyType(by_name))

    def get(self, name: str) -> TaskNode:
        """Look up a node by name.

        Raises:
            KeyError: If no node has that name
        """
        return self._by_name[name]

    @property
    def names(self) -> List[str]:
        return [node.name for node in self.nodes]

    @property
    def start_nodes(self) -> List[TaskNode]:
        """Start nodes in declaration order."""
        return [node for node in self.nodes if node.is_start]

    def successors(self, name: str, outcome: Any = None) -> Tuple[str, ...]:
        """Successors of a node, under ``outcome`` for decision nodes."""
        return self.get(name).successors_for(outcome)

    def reachable_from_start(self) -> List[str]:
        """Names reachable from any start node, in discovery order."""
        seen: List[str] = []
        stack = [node.name for node in reversed(self.start_nodes)]
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.append(name)
            node = self.get(name)
            targets = list(node.static_successors)
            if node.decision_table is not None:
                targets.extend(node.decision_table.targets())
            stack.extend(reversed(targets))
        return seen

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[TaskNode]:
        return iter(self.nodes)

    @classmethod
    def from_nodes(cls, nodes: Sequence[TaskNode], **kwargs: Any) -> "WorkflowGraph":
        """Build a graph from any sequence of nodes."""
        return cls(nodes=tuple(nodes), **kwargs)
