"""Tests for GraphExecutor (synchronous runs)."""

import pytest

from workgraph.domain.workflow.errors import (
    DanglingReferenceError,
    MissingContextError,
    NodeExecutionError,
    NoStartNodeError,
    StepLimitExceededError,
    UnknownOutcomeError,
    UnresolvedExecutorError,
)
from workgraph.domain.workflow.graph_executor import (
    INITIAL_INPUT_KEY,
    FailurePolicy,
    GraphExecutor,
    run,
)
from workgraph.domain.workflow.graph_models import TaskNode, WorkflowGraph
from workgraph.domain.workflow.result_store import NodeFailure
from workgraph.domain.workflow.run_state import NodeExecutionStatus, RunStatus
from workgraph.observability.metrics import MetricsCollector
from workgraph.settings import clear_settings_cache


class RecordingExecutor:
    """Executor that records its inputs and replays scripted outputs."""

    def __init__(self, name, calls, outputs=None):
        self.name = name
        self.calls = calls
        self._outputs = list(outputs) if outputs is not None else None

    def invoke(self, input):
        self.calls.append((self.name, input))
        if self._outputs is not None:
            return self._outputs.pop(0)
        return f"{self.name}-output"


class FailingExecutor:
    """Executor that always raises."""

    def __init__(self, name, calls):
        self.name = name
        self.calls = calls

    def invoke(self, input):
        self.calls.append((self.name, input))
        raise RuntimeError(f"{self.name} exploded")


def make_graph(*nodes, workflow_id="test_workflow") -> WorkflowGraph:
    """Helper to create a WorkflowGraph from nodes."""
    return WorkflowGraph(nodes=nodes, workflow_id=workflow_id)


def make_executors(calls, *names, **scripted):
    """Helper to build recording executors keyed by node name."""
    executors = {name: RecordingExecutor(name, calls) for name in names}
    for name, outputs in scripted.items():
        executors[name] = RecordingExecutor(name, calls, outputs)
    return executors


def visited(calls):
    return [name for name, _ in calls]


@pytest.fixture
def calls():
    return []


@pytest.fixture
def metrics():
    return MetricsCollector()


class TestLinearExecution:
    """Plain graphs without decision nodes."""

    def test_chain_visits_each_node_once_in_order(self, calls, metrics):
        """A chain runs every node exactly once, in successor order."""
        graph = make_graph(
            TaskNode("research", is_start=True, static_successors=("write",)),
            TaskNode("write", static_successors=("edit",)),
            TaskNode("edit"),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "research", "write", "edit"),
            metrics=metrics,
        )

        results = executor.run(graph)

        assert visited(calls) == ["research", "write", "edit"]
        assert results.names() == ["research", "write", "edit"]

    def test_tree_is_breadth_first_and_each_node_runs_once(self, calls, metrics):
        """Siblings run in listed order before nodes activated later."""
        graph = make_graph(
            TaskNode("root", is_start=True, static_successors=("left", "right")),
            TaskNode("left", static_successors=("left_child",)),
            TaskNode("right", static_successors=("right_child",)),
            TaskNode("left_child"),
            TaskNode("right_child"),
        )
        executor = GraphExecutor(
            executors=make_executors(
                calls, "root", "left", "right", "left_child", "right_child"
            ),
            metrics=metrics,
        )

        executor.run(graph)

        assert visited(calls) == ["root", "left", "right", "left_child", "right_child"]
        assert len(set(visited(calls))) == len(calls)

    def test_start_node_gets_initial_input(self, calls, metrics):
        """Start nodes receive the initial input, successors the previous output."""
        graph = make_graph(
            TaskNode("first", is_start=True, static_successors=("second",)),
            TaskNode("second"),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "first", "second"),
            metrics=metrics,
        )

        executor.run(graph, initial_input={"topic": "flood"})

        assert calls[0] == ("first", {"topic": "flood"})
        assert calls[1] == ("second", "first-output")

    def test_multiple_start_nodes_run_in_declaration_order(self, calls, metrics):
        """All start nodes are queued, in the order they are declared."""
        graph = make_graph(
            TaskNode("b_start", is_start=True),
            TaskNode("a_start", is_start=True),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "a_start", "b_start"),
            metrics=metrics,
        )

        executor.run(graph, initial_input="go")

        assert calls == [("b_start", "go"), ("a_start", "go")]

    def test_pure_executors_give_identical_results(self, metrics):
        """Re-running a graph with pure executors yields the same store."""
        graph = make_graph(
            TaskNode("double", is_start=True, static_successors=("increment",)),
            TaskNode("increment"),
        )
        executors = {"double": lambda x: x * 2, "increment": lambda x: x + 1}
        executor = GraphExecutor(executors=executors, metrics=metrics)

        first = executor.run(graph, initial_input=5)
        second = executor.run(graph, initial_input=5)

        assert first.all() == second.all() == [("double", 10), ("increment", 11)]
        assert first == second

    def test_runs_do_not_share_state(self, metrics):
        """Each run gets its own result store."""
        graph = make_graph(TaskNode("echo", is_start=True))
        executor = GraphExecutor(executors={"echo": lambda x: x}, metrics=metrics)

        first = executor.run(graph, initial_input="one")
        second = executor.run(graph, initial_input="two")

        assert first.get("echo") == "one"
        assert second.get("echo") == "two"


class TestGraphConstruction:
    """Construction errors surface before anything runs."""

    def test_dangling_successor_fails_before_execution(self, calls):
        """A dangling successor is rejected at construction time."""
        executor = RecordingExecutor("start", calls)

        with pytest.raises(DanglingReferenceError) as exc_info:
            make_graph(
                TaskNode("start", executor=executor, is_start=True,
                         static_successors=("ghost",)),
            )

        assert exc_info.value.missing == "ghost"
        assert exc_info.value.referenced_by == "start"
        assert calls == []

    def test_zero_start_nodes_fails(self):
        """A graph with no start node cannot be built."""
        with pytest.raises(NoStartNodeError):
            make_graph(TaskNode("orphan"))


class TestDecisionRouting:
    """Decision nodes route on their executor's output."""

    @pytest.fixture
    def monitor_graph(self):
        return make_graph(
            TaskNode(
                "monitor_progress",
                is_start=True,
                decision_table={"ongoing": ["coordinate_response"], "completed": ""},
            ),
            TaskNode("coordinate_response"),
        )

    def test_ongoing_activates_coordinate_response(self, monitor_graph, calls, metrics):
        """Outcome 'ongoing' activates exactly coordinate_response."""
        executor = GraphExecutor(
            executors=make_executors(
                calls, "coordinate_response", monitor_progress=["ongoing"]
            ),
            metrics=metrics,
        )

        workflow_run = executor.execute(monitor_graph)

        assert visited(calls) == ["monitor_progress", "coordinate_response"]
        first = workflow_run.state.node_history[0]
        assert first.outcome == "ongoing"
        assert first.activated == ["coordinate_response"]

    def test_completed_activates_nothing(self, monitor_graph, calls, metrics):
        """Outcome 'completed' terminates the branch."""
        executor = GraphExecutor(
            executors=make_executors(
                calls, "coordinate_response", monitor_progress=["completed"]
            ),
            metrics=metrics,
        )

        results = executor.run(monitor_graph)

        assert visited(calls) == ["monitor_progress"]
        assert results.to_dict() == {"monitor_progress": "completed"}

    def test_unknown_outcome_raises(self, monitor_graph, calls, metrics):
        """An output missing from the table raises UnknownOutcomeError."""
        executor = GraphExecutor(
            executors=make_executors(
                calls, "coordinate_response", monitor_progress=["unknown_value"]
            ),
            metrics=metrics,
        )

        with pytest.raises(UnknownOutcomeError) as exc_info:
            executor.run(monitor_graph)

        error = exc_info.value
        assert error.node == "monitor_progress"
        assert error.value == "unknown_value"
        assert "monitor_progress" in str(error)
        assert "unknown_value" in str(error)
        assert error.results.get("monitor_progress") == "unknown_value"
        assert error.state.status == RunStatus.FAILED

    def test_severity_router_low_activates_dispatcher_only(self, calls, metrics):
        """Router returning 'low' runs dispatcher only."""
        graph = make_graph(
            TaskNode(
                "router",
                is_start=True,
                decision_table={
                    "critical": ["dispatcher", "monitor"],
                    "low": ["dispatcher"],
                },
            ),
            TaskNode("dispatcher"),
            TaskNode("monitor"),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "dispatcher", "monitor", router=["low"]),
            metrics=metrics,
        )

        results = executor.run(graph, initial_input={"severity": "low"})

        assert results.to_dict() == {
            "router": "low",
            "dispatcher": "dispatcher-output",
        }

    def test_severity_router_critical_activates_both_in_order(self, calls, metrics):
        """Router returning 'critical' runs dispatcher then monitor."""
        graph = make_graph(
            TaskNode(
                "router",
                is_start=True,
                decision_table={
                    "critical": ["dispatcher", "monitor"],
                    "low": ["dispatcher"],
                },
            ),
            TaskNode("dispatcher"),
            TaskNode("monitor"),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "dispatcher", "monitor", router=["critical"]),
            metrics=metrics,
        )

        results = executor.run(graph)

        assert results.names() == ["router", "dispatcher", "monitor"]


class TestCycles:
    """Cyclic graphs and the step guard."""

    @pytest.fixture
    def retry_graph(self):
        return make_graph(
            TaskNode("attempt", is_start=True,
                     decision_table={"retry": ["attempt"], "done": ""}),
        )

    def test_retry_loop_runs_until_done(self, retry_graph, calls, metrics):
        """The loop re-runs the node until it reports 'done'."""
        executor = GraphExecutor(
            executors=make_executors(calls, attempt=["retry", "retry", "done"]),
            metrics=metrics,
        )

        workflow_run = executor.execute(retry_graph)

        assert visited(calls) == ["attempt", "attempt", "attempt"]
        assert workflow_run.results.get("attempt") == "done"
        assert len(workflow_run.results) == 1
        assert workflow_run.state.visit_count("attempt") == 3
        assert [e.outcome for e in workflow_run.state.executions_of("attempt")] == [
            "retry", "retry", "done",
        ]

    def test_reexecution_receives_previous_output(self, retry_graph, calls, metrics):
        """A node re-activated by itself receives its own last output."""
        executor = GraphExecutor(
            executors=make_executors(calls, attempt=["retry", "done"]),
            metrics=metrics,
        )

        executor.run(retry_graph, initial_input="seed")

        assert calls == [("attempt", "seed"), ("attempt", "retry")]

    def test_reexecution_keeps_first_completion_position(self, calls, metrics):
        """Overwriting a result keeps its original position."""
        graph = make_graph(
            TaskNode("draft", is_start=True, static_successors=("review",)),
            TaskNode("review", decision_table={"revise": ["draft"], "approved": ""}),
        )
        executor = GraphExecutor(
            executors=make_executors(
                calls,
                draft=["v1", "v2"],
                review=["revise", "approved"],
            ),
            metrics=metrics,
        )

        results = executor.run(graph)

        assert results.all() == [("draft", "v2"), ("review", "approved")]

    def test_step_limit_stops_endless_loop(self, retry_graph, metrics):
        """An endless loop trips the step guard."""
        executor = GraphExecutor(
            executors={"attempt": lambda _: "retry"},
            max_steps=5,
            metrics=metrics,
        )

        with pytest.raises(StepLimitExceededError) as exc_info:
            executor.run(retry_graph)

        assert exc_info.value.max_steps == 5
        assert exc_info.value.state.steps == 5
        assert exc_info.value.results.get("attempt") == "retry"

    def test_step_guard_can_be_disabled(self, retry_graph, metrics):
        """max_steps=None lets a long but finite loop finish."""
        outputs = ["retry"] * 50 + ["done"]
        executor = GraphExecutor(
            executors={"attempt": lambda _: outputs.pop(0)},
            max_steps=None,
            metrics=metrics,
        )

        workflow_run = executor.execute(retry_graph)

        assert workflow_run.state.steps == 51

    def test_default_step_limit_comes_from_settings(self, retry_graph, monkeypatch, metrics):
        """The step guard defaults to WORKGRAPH_MAX_STEPS."""
        monkeypatch.setenv("WORKGRAPH_MAX_STEPS", "3")
        clear_settings_cache()
        executor = GraphExecutor(
            executors={"attempt": lambda _: "retry"},
            metrics=metrics,
        )

        with pytest.raises(StepLimitExceededError):
            executor.run(retry_graph)

        assert executor.max_steps == 3


class TestContextInputs:
    """Context gathering for dependent nodes."""

    def test_context_outputs_are_passed_as_dict(self, calls, metrics):
        """A node with context inputs receives their outputs by name."""
        graph = make_graph(
            TaskNode("collect", is_start=True, static_successors=("analyze", "report")),
            TaskNode("analyze"),
            TaskNode("report", context_inputs=("collect", "analyze")),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "collect", "analyze", "report"),
            metrics=metrics,
        )

        executor.run(graph)

        assert calls[-1] == (
            "report",
            {"collect": "collect-output", "analyze": "analyze-output"},
        )

    def test_start_node_with_context_gets_context_and_initial_input(self, calls, metrics):
        """A start node declaring context inputs still receives its context."""
        graph = make_graph(
            TaskNode("gather", is_start=True),
            TaskNode("summarize", is_start=True, context_inputs=("gather",)),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "gather", "summarize"),
            metrics=metrics,
        )

        executor.run(graph, initial_input="init")

        assert calls == [
            ("gather", "init"),
            ("summarize", {"gather": "gather-output", INITIAL_INPUT_KEY: "init"}),
        ]

    def test_reactivated_start_node_gets_context_only(self, calls, metrics):
        """The initial input is only added on the initial activation."""
        graph = make_graph(
            TaskNode("seed", is_start=True, static_successors=("loop",)),
            TaskNode("loop", is_start=True, context_inputs=("seed",),
                     decision_table={"again": ["loop"], "stop": ""}),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "seed", loop=["again", "stop", "stop"]),
            metrics=metrics,
        )

        executor.run(graph, initial_input="init")

        loop_inputs = [node_input for name, node_input in calls if name == "loop"]
        assert loop_inputs[0] == {"seed": "seed-output", INITIAL_INPUT_KEY: "init"}
        assert loop_inputs[1:] == [{"seed": "seed-output"}, {"seed": "seed-output"}]

    def test_missing_context_raises(self, calls, metrics):
        """A node scheduled before its context completes fails."""
        graph = make_graph(
            TaskNode("collect", is_start=True, static_successors=("report", "analyze")),
            TaskNode("analyze"),
            TaskNode("report", context_inputs=("analyze",)),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "collect", "analyze", "report"),
            metrics=metrics,
        )

        with pytest.raises(MissingContextError) as exc_info:
            executor.run(graph)

        assert exc_info.value.node == "report"
        assert exc_info.value.missing == ["analyze"]
        assert visited(calls) == ["collect"]
        assert exc_info.value.results.names() == ["collect"]


class TestFailurePolicy:
    """Executor exceptions under CONTINUE and ABORT."""

    def test_continue_records_failure_and_runs_successors(self, calls, metrics):
        """A failing plain node is recorded and its successors still run."""
        graph = make_graph(
            TaskNode("fetch", is_start=True, static_successors=("summarize",)),
            TaskNode("summarize"),
        )
        executors = make_executors(calls, "summarize")
        executors["fetch"] = FailingExecutor("fetch", calls)
        executor = GraphExecutor(
            executors=executors,
            failure_policy=FailurePolicy.CONTINUE,
            metrics=metrics,
        )

        workflow_run = executor.execute(graph)

        failure = workflow_run.results.get("fetch")
        assert isinstance(failure, NodeFailure)
        assert failure.error_type == "RuntimeError"
        assert failure.message == "fetch exploded"
        assert calls[-1] == ("summarize", failure)
        assert workflow_run.results.failures() == {"fetch": failure}
        assert workflow_run.state.node_history[0].status == NodeExecutionStatus.FAILED
        assert workflow_run.state.status == RunStatus.COMPLETED

    def test_continue_routes_failed_decision_node(self, calls, metrics):
        """A failing decision node takes its 'failed' branch."""
        graph = make_graph(
            TaskNode("check", is_start=True,
                     decision_table={"ok": ["proceed"], "failed": ["escalate"]}),
            TaskNode("proceed"),
            TaskNode("escalate"),
        )
        executors = make_executors(calls, "proceed", "escalate")
        executors["check"] = FailingExecutor("check", calls)
        executor = GraphExecutor(executors=executors, metrics=metrics)

        workflow_run = executor.execute(graph)

        assert visited(calls) == ["check", "escalate"]
        assert workflow_run.state.node_history[0].outcome == "failed"

    def test_continue_ends_branch_without_failed_outcome(self, calls, metrics):
        """A failing decision node with no 'failed' branch ends its branch."""
        graph = make_graph(
            TaskNode("check", is_start=True, decision_table={"ok": ["proceed"]}),
            TaskNode("proceed"),
        )
        executors = make_executors(calls, "proceed")
        executors["check"] = FailingExecutor("check", calls)
        executor = GraphExecutor(executors=executors, metrics=metrics)

        results = executor.run(graph)

        assert visited(calls) == ["check"]
        assert isinstance(results.get("check"), NodeFailure)

    def test_abort_raises_with_partial_results(self, calls, metrics):
        """ABORT stops the run and attaches what completed."""
        graph = make_graph(
            TaskNode("plan", is_start=True, static_successors=("execute",)),
            TaskNode("execute", static_successors=("report",)),
            TaskNode("report"),
        )
        executors = make_executors(calls, "plan", "report")
        executors["execute"] = FailingExecutor("execute", calls)
        executor = GraphExecutor(
            executors=executors,
            failure_policy="abort",
            metrics=metrics,
        )

        with pytest.raises(NodeExecutionError) as exc_info:
            executor.run(graph)

        error = exc_info.value
        assert error.node == "execute"
        assert isinstance(error.__cause__, RuntimeError)
        assert error.results.to_dict() == {"plan": "plan-output"}
        assert error.state.status == RunStatus.FAILED
        assert visited(calls) == ["plan", "execute"]

    def test_failure_policy_defaults_from_settings(self, monkeypatch, metrics):
        """WORKGRAPH_FAILURE_POLICY selects the default policy."""
        monkeypatch.setenv("WORKGRAPH_FAILURE_POLICY", "abort")
        clear_settings_cache()

        executor = GraphExecutor(metrics=metrics)

        assert executor.failure_policy == FailurePolicy.ABORT


class TestExecutorResolution:
    """How nodes find their executors."""

    def test_executor_object_on_node(self, calls, metrics):
        """An executor object set on the node is used directly."""
        graph = make_graph(
            TaskNode("solo", executor=RecordingExecutor("solo", calls), is_start=True),
        )

        GraphExecutor(metrics=metrics).run(graph, initial_input=1)

        assert calls == [("solo", 1)]

    def test_string_reference_is_resolved(self, metrics):
        """A string executor reference is looked up in the mapping."""
        graph = make_graph(TaskNode("task", executor="shared_agent", is_start=True))
        executor = GraphExecutor(
            executors={"shared_agent": lambda x: f"handled {x}"},
            metrics=metrics,
        )

        results = executor.run(graph, initial_input="input")

        assert results.get("task") == "handled input"

    def test_unresolved_executor_fails_before_any_node_runs(self, calls, metrics):
        """Every executor is resolved before the first invocation."""
        graph = make_graph(
            TaskNode("first", is_start=True, static_successors=("second",)),
            TaskNode("second", executor="nobody"),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "first"),
            metrics=metrics,
        )

        with pytest.raises(UnresolvedExecutorError) as exc_info:
            executor.run(graph)

        assert exc_info.value.node == "second"
        assert exc_info.value.reference == "nobody"
        assert calls == []

    def test_async_executor_rejected_by_sync_run(self, calls, metrics):
        """A coroutine executor fails resolution in a synchronous run."""
        async def agent(_):
            return "never"

        graph = make_graph(
            TaskNode("first", is_start=True, static_successors=("agent",)),
            TaskNode("agent", executor=agent),
        )
        executor = GraphExecutor(
            executors=make_executors(calls, "first"),
            metrics=metrics,
        )

        with pytest.raises(UnresolvedExecutorError) as exc_info:
            executor.run(graph)

        assert exc_info.value.node == "agent"
        assert "run_async" in str(exc_info.value)
        assert calls == []
        assert metrics.get_metrics().runs_failed == 1


class TestRunBookkeeping:
    """Run state and metrics."""

    def test_run_state_records_history(self, calls, metrics):
        graph = make_graph(
            TaskNode("a", is_start=True, static_successors=("b",)),
            TaskNode("b"),
        )
        executor = GraphExecutor(executors=make_executors(calls, "a", "b"), metrics=metrics)

        workflow_run = executor.execute(graph)

        state = workflow_run.state
        assert state.status == RunStatus.COMPLETED
        assert state.workflow_id == "test_workflow"
        assert state.steps == 2
        assert [e.step for e in state.node_history] == [1, 2]
        assert state.node_history[0].activated == ["b"]
        assert state.finished_at is not None

    def test_metrics_are_recorded(self, calls, metrics):
        graph = make_graph(
            TaskNode("a", is_start=True, static_successors=("b",)),
            TaskNode("b"),
        )
        executor = GraphExecutor(executors=make_executors(calls, "a", "b"), metrics=metrics)

        executor.run(graph)

        snapshot = metrics.get_metrics()
        assert snapshot.runs_started == 1
        assert snapshot.runs_completed == 1
        assert snapshot.node_invocations == 2
        assert metrics.get_workflow_metrics("test_workflow").completions == 1
        assert metrics.get_node_metrics("a").invocations == 1

    def test_failed_run_is_counted(self, metrics):
        graph = make_graph(TaskNode("loop", is_start=True,
                                    decision_table={"again": ["loop"]}))
        executor = GraphExecutor(
            executors={"loop": lambda _: "again"},
            max_steps=2,
            metrics=metrics,
        )

        with pytest.raises(StepLimitExceededError):
            executor.run(graph)

        assert metrics.get_metrics().runs_failed == 1


class TestModuleRun:
    """The module-level run() entry point."""

    def test_run_function(self):
        graph = make_graph(
            TaskNode("upper", is_start=True, static_successors=("exclaim",)),
            TaskNode("exclaim"),
        )

        results = run(
            graph,
            "hello",
            executors={"upper": str.upper, "exclaim": lambda s: s + "!"},
            metrics=MetricsCollector(),
        )

        assert results.to_dict() == {"upper": "HELLO", "exclaim": "HELLO!"}
