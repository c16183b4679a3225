"""Error taxonomy for task-graph workflows.

Construction errors (GraphDefinitionError subclasses) are raised while a
WorkflowGraph is being built and are never recovered internally. Run errors
(WorkflowRunError subclasses) are raised by the GraphExecutor and carry the
partial results and run state collected before the failure.
"""

from typing import Any, Iterable, List, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""
    pass


# =============================================================================
# Graph construction
# =============================================================================

class GraphDefinitionError(WorkflowError):
    """The graph definition is malformed."""
    pass


class DuplicateNodeError(GraphDefinitionError):
    """Two task nodes share the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate task node name: '{name}'")


class DanglingReferenceError(GraphDefinitionError):
    """A node references a name that does not exist in the graph."""

    def __init__(self, missing: str, referenced_by: str):
        self.missing = missing
        self.referenced_by = referenced_by
        super().__init__(
            f"Node '{referenced_by}' references unknown node '{missing}'"
        )


class NoStartNodeError(GraphDefinitionError):
    """No node is flagged as a start node."""

    def __init__(self, workflow_id: Optional[str] = None):
        self.workflow_id = workflow_id
        where = f" in workflow '{workflow_id}'" if workflow_id else ""
        super().__init__(f"No start node defined{where}")


class AmbiguousTransitionError(GraphDefinitionError):
    """A node declares both static successors and a decision table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Node '{name}' declares both static_successors and decision_table"
        )


# =============================================================================
# Graph execution
# =============================================================================

class WorkflowRunError(WorkflowError):
    """A run failed after it started.

    The executor attaches the partial ResultStore and RunState before
    raising, so callers can inspect what completed.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.results = None
        self.state = None


class MissingContextError(WorkflowRunError):
    """A node was scheduled before its context inputs produced results."""

    def __init__(self, node: str, missing: Iterable[str]):
        self.node = node
        self.missing: List[str] = list(missing)
        super().__init__(
            f"Node '{node}' is missing context from: {', '.join(self.missing)}"
        )


class UnknownOutcomeError(WorkflowRunError):
    """A decision node produced an output absent from its decision table."""

    def __init__(
        self,
        node: str,
        value: Any,
        valid_outcomes: Optional[Iterable[Any]] = None,
    ):
        self.node = node
        self.value = value
        self.valid_outcomes: List[Any] = list(valid_outcomes or [])
        super().__init__(
            f"Decision node '{node}' produced unknown outcome {value!r}. "
            f"Valid outcomes: {self.valid_outcomes}"
        )


class StepLimitExceededError(WorkflowRunError):
    """The run exceeded the configured maximum number of steps."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Workflow exceeded step limit of {max_steps}")


class NodeExecutionError(WorkflowRunError):
    """An executor raised while running a node (abort policy)."""

    def __init__(self, node: str, message: Optional[str] = None):
        self.node = node
        super().__init__(message or f"Executor for node '{node}' failed")


class NodeTimeoutError(WorkflowRunError):
    """An executor did not finish within the node timeout."""

    def __init__(self, node: str, timeout: float):
        self.node = node
        self.timeout = timeout
        super().__init__(f"Node '{node}' timed out after {timeout}s")


class UnresolvedExecutorError(WorkflowRunError):
    """A node's executor reference could not be resolved."""

    def __init__(self, node: str, reference: Any, reason: Optional[str] = None):
        self.node = node
        self.reference = reference
        self.reason = reason
        message = f"No executor found for node '{node}' (reference: {reference!r})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# =============================================================================
# Loading and registry
# =============================================================================

class GraphLoadError(WorkflowError):
    """Raised when a workflow definition cannot be loaded."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []

    def __str__(self) -> str:
        if self.errors:
            error_msgs = [f"  - {e.message}" for e in self.errors[:5]]
            if len(self.errors) > 5:
                error_msgs.append(f"  ... and {len(self.errors) - 5} more errors")
            return f"{self.args[0]}\n" + "\n".join(error_msgs)
        return self.args[0]


class GraphNotFoundError(WorkflowError):
    """Raised when a requested workflow is not registered."""

    def __init__(self, workflow_id: str, available: Optional[List[str]] = None):
        self.workflow_id = workflow_id
        self.available = available or []
        msg = f"Workflow graph not found: {workflow_id}"
        if self.available:
            msg += f". Available graphs: {', '.join(self.available)}"
        super().__init__(msg)
