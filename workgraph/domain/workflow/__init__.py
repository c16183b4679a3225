"""Workflow domain module.

Provides task-graph definition, validation, loading and execution.
"""

from workgraph.domain.workflow.errors import (
    AmbiguousTransitionError,
    DanglingReferenceError,
    DuplicateNodeError,
    GraphDefinitionError,
    GraphLoadError,
    GraphNotFoundError,
    MissingContextError,
    NoStartNodeError,
    NodeExecutionError,
    NodeTimeoutError,
    StepLimitExceededError,
    UnknownOutcomeError,
    UnresolvedExecutorError,
    WorkflowError,
    WorkflowRunError,
)
from workgraph.domain.workflow.graph_models import (
    FAILED_OUTCOME,
    NO_SUCCESSOR,
    DecisionTable,
    TaskNode,
    WorkflowGraph,
)
from workgraph.domain.workflow.result_store import NodeFailure, ResultStore
from workgraph.domain.workflow.run_state import (
    NodeExecution,
    NodeExecutionStatus,
    RunState,
    RunStatus,
)
from workgraph.domain.workflow.executors import (
    CallableExecutor,
    Executor,
    ExecutorResolver,
    as_executor,
)
from workgraph.domain.workflow.decision_router import DecisionRouter
from workgraph.domain.workflow.graph_executor import (
    INITIAL_INPUT_KEY,
    FailurePolicy,
    GraphExecutor,
    WorkflowRun,
    run,
    run_async,
)
from workgraph.domain.workflow.graph_validator import (
    GraphValidationError,
    GraphValidationErrorCode,
    GraphValidationResult,
    GraphValidator,
)
from workgraph.domain.workflow.graph_loader import (
    GraphLoader,
    graph_from_dict,
    graph_to_dict,
)
from workgraph.domain.workflow.graph_registry import (
    GraphRegistry,
    get_graph_registry,
    reset_graph_registry,
)


__all__ = [
    # Errors
    "WorkflowError",
    "GraphDefinitionError",
    "DuplicateNodeError",
    "DanglingReferenceError",
    "NoStartNodeError",
    "AmbiguousTransitionError",
    "WorkflowRunError",
    "MissingContextError",
    "UnknownOutcomeError",
    "StepLimitExceededError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "UnresolvedExecutorError",
    "GraphLoadError",
    "GraphNotFoundError",
    # Models
    "TaskNode",
    "DecisionTable",
    "WorkflowGraph",
    "NO_SUCCESSOR",
    "FAILED_OUTCOME",
    # Results
    "ResultStore",
    "NodeFailure",
    # Run State
    "RunState",
    "RunStatus",
    "NodeExecution",
    "NodeExecutionStatus",
    # Executors
    "Executor",
    "CallableExecutor",
    "ExecutorResolver",
    "as_executor",
    # Routing
    "DecisionRouter",
    # Execution
    "INITIAL_INPUT_KEY",
    "FailurePolicy",
    "GraphExecutor",
    "WorkflowRun",
    "run",
    "run_async",
    # Loading
    "GraphValidator",
    "GraphValidationError",
    "GraphValidationErrorCode",
    "GraphValidationResult",
    "GraphLoader",
    "graph_from_dict",
    "graph_to_dict",
    # Registry
    "GraphRegistry",
    "get_graph_registry",
    "reset_graph_registry",
]
