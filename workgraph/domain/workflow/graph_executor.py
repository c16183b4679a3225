"""Graph executor for task-graph workflows.

The GraphExecutor walks a WorkflowGraph from its start nodes, invokes each
node's executor, asks the DecisionRouter for successors and collects outputs
in a ResultStore.

INVARIANTS:

Ordering:
- The ready queue is FIFO; start nodes are queued in declaration order
- Successors activated by one node are queued in listed order
- Re-activating a node re-runs it; the result store keeps the last output

Termination:
- Cycles are legal and are not detected. Terminating them is the job of
  the decision tables; an endless loop is a caller error. The step guard
  (max_steps) turns it into StepLimitExceededError.

Failure policy:
- CONTINUE: an executor exception is recorded as a NodeFailure. Plain nodes
  still activate their successors; decision nodes route on FAILED_OUTCOME.
- ABORT: the run stops with NodeExecutionError chained to the exception.
- MissingContextError, UnknownOutcomeError, StepLimitExceededError and
  UnresolvedExecutorError abort under both policies.
- Every run error carries the partial results and the run state.

Isolation:
- All mutable state lives in a per-run _Run object; the graph is read-only
  and may be shared by concurrent runs.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple, Union

from workgraph.domain.workflow.decision_router import DecisionRouter
from workgraph.domain.workflow.errors import (
    MissingContextError,
    NodeExecutionError,
    NodeTimeoutError,
    StepLimitExceededError,
    WorkflowRunError,
)
from workgraph.domain.workflow.executors import (
    ExecutorResolver,
    invoke_async,
    invoke_sync,
)
from workgraph.domain.workflow.graph_models import FAILED_OUTCOME, WorkflowGraph
from workgraph.domain.workflow.result_store import NodeFailure, ResultStore
from workgraph.domain.workflow.run_state import NodeExecutionStatus, RunState
from workgraph.observability.logging import ContextLogger, get_logger
from workgraph.observability.metrics import MetricsCollector, get_metrics_collector
from workgraph.settings import Settings, get_settings

_logger = get_logger(__name__)

_UNSET = object()

# Key under which a start node that declares context inputs receives the
# run's initial input
INITIAL_INPUT_KEY = "__initial_input__"


class FailurePolicy(str, Enum):
    """What the executor does when a node's executor raises."""
    CONTINUE = "continue"  # record NodeFailure and keep routing
    ABORT = "abort"        # stop the run with NodeExecutionError


@dataclass
class WorkflowRun:
    """Outcome of a completed run."""
    results: ResultStore
    state: RunState


@dataclass
class _Activation:
    """A queued node activation."""
    node_name: str
    input: Any
    initial: bool = False


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class _Run:
    """Mutable state of one run: queue, results, history."""

    def __init__(
        self,
        graph: WorkflowGraph,
        executor: "GraphExecutor",
        initial_input: Any,
    ):
        self.graph = graph
        self.policy = executor.failure_policy
        self.max_steps = executor.max_steps
        self.metrics = executor.metrics
        self.router = DecisionRouter(graph)
        self.results = ResultStore()
        self.state = RunState(workflow_id=graph.workflow_id)
        self.queue: Deque[_Activation] = deque()
        self.executors: Dict[str, Any] = {}
        self.log: ContextLogger = _logger.with_context(
            run_id=self.state.run_id,
            workflow_id=graph.workflow_id,
        )
        self._resolver = executor.resolver
        self._initial_input = initial_input

    def begin(self, sync: bool = False) -> None:
        """Resolve executors and queue the start nodes.

        Synchronous runs reject executors that can only be awaited here,
        before any node runs.
        """
        self.state.start()
        self.metrics.record_run_start(self.graph.workflow_id)
        self.log.info(f"Starting workflow run {self.state.run_id}")

        self.executors = self._resolver.resolve_all(self.graph, sync=sync)
        for node in self.graph.start_nodes:
            self.queue.append(
                _Activation(node.name, self._initial_input, initial=True)
            )

    def next_activation(self) -> Tuple[_Activation, int]:
        """Pop the next activation and advance the step counter.

        Raises:
            StepLimitExceededError: If the step guard trips
        """
        if self.max_steps is not None and self.state.steps >= self.max_steps:
            raise StepLimitExceededError(self.max_steps)
        activation = self.queue.popleft()
        return activation, self.state.next_step()

    def prepare_input(self, activation: _Activation) -> Any:
        """Build the executor input for an activation.

        Raises:
            MissingContextError: If a context input has not completed yet
        """
        node = self.graph.get(activation.node_name)
        missing = [n for n in node.context_inputs if not self.results.contains(n)]
        if missing:
            raise MissingContextError(node.name, missing)

        if not node.context_inputs:
            return activation.input

        context = {name: self.results.get(name) for name in node.context_inputs}
        if activation.initial:
            context.setdefault(INITIAL_INPUT_KEY, activation.input)
        return context

    def complete(
        self,
        activation: _Activation,
        step: int,
        output: Any,
        duration_ms: float,
    ) -> None:
        """Record a successful invocation and queue its successors."""
        name = activation.node_name
        self.results.record(name, output)
        self.metrics.record_node_invocation(name, duration_ms)
        self.log.debug(
            f"Node {name} completed", node=name, step=step, duration_ms=duration_ms
        )

        node = self.graph.get(name)
        outcome = output if node.is_decision else None
        try:
            successors = self.router.next_nodes(name, output)
        except WorkflowRunError:
            self.state.record_execution(
                step, name, NodeExecutionStatus.COMPLETED, duration_ms, outcome=outcome
            )
            raise

        self.state.record_execution(
            step,
            name,
            NodeExecutionStatus.COMPLETED,
            duration_ms,
            outcome=outcome,
            activated=list(successors),
        )
        self._enqueue(successors, output)

    def fail(
        self,
        activation: _Activation,
        step: int,
        exc: BaseException,
        duration_ms: float,
    ) -> None:
        """Apply the failure policy to an executor exception."""
        name = activation.node_name
        node = self.graph.get(name)
        outcome = FAILED_OUTCOME if node.is_decision else None
        self.metrics.record_node_invocation(name, duration_ms, failed=True)

        if self.policy == FailurePolicy.ABORT:
            self.state.record_execution(
                step, name, NodeExecutionStatus.FAILED, duration_ms, outcome=outcome
            )
            if isinstance(exc, NodeTimeoutError):
                raise exc
            raise NodeExecutionError(
                name, f"Executor for node '{name}' failed: {exc}"
            ) from exc

        self.log.warning(
            f"Node {name} failed, recording failure: {exc}",
            node=name,
            step=step,
            exc_info=exc,
        )
        failure = NodeFailure.from_exception(name, exc)
        # Abandoned invocations leave no entry in the store
        if not isinstance(exc, NodeTimeoutError):
            self.results.record(name, failure)
        successors = self.router.next_nodes(name, failure, failed=True)
        self.state.record_execution(
            step,
            name,
            NodeExecutionStatus.FAILED,
            duration_ms,
            outcome=outcome,
            activated=list(successors),
        )
        self._enqueue(successors, failure)

    def _enqueue(self, successors, output: Any) -> None:
        for successor in successors:
            self.queue.append(_Activation(successor, output))

    def finish(self) -> WorkflowRun:
        self.state.set_completed()
        self.metrics.record_run_complete(
            self.graph.workflow_id, self.state.duration_ms, self.state.steps
        )
        self.log.info(
            f"Workflow run completed in {self.state.steps} step(s)",
            duration_ms=self.state.duration_ms,
        )
        return WorkflowRun(results=self.results, state=self.state)

    def abort(self, error: WorkflowRunError) -> WorkflowRunError:
        """Attach partial results to a run error and mark the run failed."""
        error.results = self.results
        error.state = self.state
        self.state.set_failed(str(error))
        self.metrics.record_run_failed(self.graph.workflow_id)
        self.log.error(f"Workflow run failed: {error}")
        return error

    def cancel(self) -> None:
        self.state.set_failed("cancelled")
        self.metrics.record_run_failed(self.graph.workflow_id)
        self.log.warning("Workflow run cancelled")


class GraphExecutor:
    """Executes task-graph workflows.

    The GraphExecutor is responsible for:
    1. Resolving every node's executor before the run starts
    2. Maintaining the FIFO ready queue
    3. Gathering context inputs and invoking executors
    4. Using DecisionRouter to determine successors after each node
    5. Recording outputs in a ResultStore and invocations in a RunState

    INVARIANT: GraphExecutor orchestrates but does NOT make routing decisions.

    Usage:
        executor = GraphExecutor(executors={"router": route_severity})
        results = executor.run(graph, initial_input={"severity": "low"})
    """

    def __init__(
        self,
        executors: Optional[Mapping[str, Any]] = None,
        failure_policy: Union[FailurePolicy, str, None] = None,
        max_steps: Any = _UNSET,
        max_concurrency: Optional[int] = None,
        node_timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the executor.

        Args:
            executors: Mapping of executor references to executors. Nodes
                whose executor is a string (or unset) are resolved here.
            failure_policy: CONTINUE or ABORT (defaults from settings)
            max_steps: Step guard; None disables it (defaults from settings)
            max_concurrency: Parallel invocations in concurrent mode
            node_timeout: Seconds before an async invocation is abandoned
            metrics: Metrics collector (defaults to the global collector)
            settings: Settings to read defaults from
        """
        settings = settings or get_settings()
        self.resolver = ExecutorResolver(executors)
        self.failure_policy = FailurePolicy(failure_policy or settings.failure_policy)
        self.max_steps = settings.max_steps if max_steps is _UNSET else max_steps
        self.max_concurrency = max_concurrency or settings.max_concurrency
        self.node_timeout = (
            node_timeout if node_timeout is not None else settings.node_timeout_seconds
        )
        self.metrics = metrics or get_metrics_collector()

    # -------------------------------------------------------------------------
    # Synchronous
    # -------------------------------------------------------------------------

    def execute(self, graph: WorkflowGraph, initial_input: Any = None) -> WorkflowRun:
        """Run a graph to completion, returning results and run state.

        node_timeout does not apply here; synchronous invocations cannot be
        abandoned.

        Raises:
            WorkflowRunError: On any run error (partial results attached)
        """
        run = _Run(graph, self, initial_input)
        try:
            run.begin(sync=True)
            while run.queue:
                activation, step = run.next_activation()
                node_input = run.prepare_input(activation)
                executor = run.executors[activation.node_name]
                started = time.perf_counter()
                try:
                    output = invoke_sync(executor, node_input)
                except Exception as e:
                    run.fail(activation, step, e, _elapsed_ms(started))
                else:
                    run.complete(activation, step, output, _elapsed_ms(started))
        except WorkflowRunError as e:
            raise run.abort(e)
        return run.finish()

    def run(self, graph: WorkflowGraph, initial_input: Any = None) -> ResultStore:
        """Run a graph to completion and return its result store."""
        return self.execute(graph, initial_input).results

    # -------------------------------------------------------------------------
    # Asynchronous
    # -------------------------------------------------------------------------

    async def execute_async(
        self,
        graph: WorkflowGraph,
        initial_input: Any = None,
        concurrent: bool = False,
    ) -> WorkflowRun:
        """Async variant of execute().

        Sequential by default, with the same ordering as execute(). With
        concurrent=True, independent activations run in parallel waves.

        Raises:
            WorkflowRunError: On any run error (partial results attached)
        """
        run = _Run(graph, self, initial_input)
        try:
            run.begin()
            if concurrent:
                await self._drain_concurrent(run)
            else:
                await self._drain_sequential(run)
        except WorkflowRunError as e:
            raise run.abort(e)
        except asyncio.CancelledError:
            run.cancel()
            raise
        return run.finish()

    async def run_async(
        self,
        graph: WorkflowGraph,
        initial_input: Any = None,
        concurrent: bool = False,
    ) -> ResultStore:
        """Async variant of run()."""
        workflow_run = await self.execute_async(graph, initial_input, concurrent)
        return workflow_run.results

    async def _drain_sequential(self, run: _Run) -> None:
        while run.queue:
            activation, step = run.next_activation()
            node_input = run.prepare_input(activation)
            output, error, duration_ms = await self._invoke_async(
                run, activation, node_input
            )
            if error is not None:
                run.fail(activation, step, error, duration_ms)
            else:
                run.complete(activation, step, output, duration_ms)

    async def _drain_concurrent(self, run: _Run) -> None:
        """Process the queue in waves of independent activations.

        An activation whose context inputs name another member of the same
        wave is deferred to the next wave. Completion is processed in wave
        order so results stay deterministic.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(activation: _Activation, node_input: Any):
            async with semaphore:
                return await self._invoke_async(run, activation, node_input)

        while run.queue:
            wave = list(run.queue)
            run.queue.clear()
            ready, deferred = self._split_wave(run.graph, wave)
            run.queue.extend(deferred)

            scheduled: List[Tuple[_Activation, int, Any]] = []
            for activation in ready:
                if run.max_steps is not None and run.state.steps >= run.max_steps:
                    raise StepLimitExceededError(run.max_steps)
                step = run.state.next_step()
                scheduled.append((activation, step, run.prepare_input(activation)))

            outcomes = await asyncio.gather(
                *(bounded(activation, node_input) for activation, _, node_input in scheduled)
            )

            for (activation, step, _), (output, error, duration_ms) in zip(
                scheduled, outcomes
            ):
                if error is not None:
                    run.fail(activation, step, error, duration_ms)
                else:
                    run.complete(activation, step, output, duration_ms)

    @staticmethod
    def _split_wave(
        graph: WorkflowGraph,
        wave: List[_Activation],
    ) -> Tuple[List[_Activation], List[_Activation]]:
        wave_names = {activation.node_name for activation in wave}
        ready: List[_Activation] = []
        deferred: List[_Activation] = []
        for activation in wave:
            node = graph.get(activation.node_name)
            blocked = any(
                name in wave_names and name != node.name
                for name in node.context_inputs
            )
            (deferred if blocked else ready).append(activation)

        # Mutually dependent activations: let the first one run and surface
        # the missing context.
        if not ready:
            ready.append(deferred.pop(0))
        return ready, deferred

    async def _invoke_async(
        self,
        run: _Run,
        activation: _Activation,
        node_input: Any,
    ) -> Tuple[Any, Optional[BaseException], float]:
        """Invoke one executor, returning (output, error, duration_ms)."""
        executor = run.executors[activation.node_name]
        started = time.perf_counter()
        try:
            if self.node_timeout is not None:
                output = await asyncio.wait_for(
                    invoke_async(executor, node_input), self.node_timeout
                )
            else:
                output = await invoke_async(executor, node_input)
        except asyncio.TimeoutError:
            return None, NodeTimeoutError(activation.node_name, self.node_timeout), _elapsed_ms(started)
        except Exception as e:
            return None, e, _elapsed_ms(started)
        return output, None, _elapsed_ms(started)


def run(
    graph: WorkflowGraph,
    initial_input: Any = None,
    executors: Optional[Mapping[str, Any]] = None,
    **options: Any,
) -> ResultStore:
    """Run a graph with a one-off GraphExecutor."""
    return GraphExecutor(executors=executors, **options).run(graph, initial_input)


async def run_async(
    graph: WorkflowGraph,
    initial_input: Any = None,
    executors: Optional[Mapping[str, Any]] = None,
    concurrent: bool = False,
    **options: Any,
) -> ResultStore:
    """Async variant of run()."""
    executor = GraphExecutor(executors=executors, **options)
    return await executor.run_async(graph, initial_input, concurrent=concurrent)
