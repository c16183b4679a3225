"""Executor protocol and adapters.

An executor is the opaque capability a task node is bound to: anything with
``invoke(input) -> output``. Executors may also provide ``ainvoke`` for the
async engine. Plain functions (sync or async) are adapted with
CallableExecutor.

BOUNDARY CONSTRAINTS:
- Executors produce outputs, they never select successors
- Executors receive only their input; they never see the graph or run state
"""

import inspect
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

from workgraph.domain.workflow.errors import UnresolvedExecutorError
from workgraph.domain.workflow.graph_models import TaskNode, WorkflowGraph


@runtime_checkable
class Executor(Protocol):
    """Protocol for task executors ("agents")."""

    def invoke(self, input: Any) -> Any:
        """Produce an output for the given input."""
        ...


class CallableExecutor:
    """Adapts a plain callable to the Executor protocol."""

    def __init__(self, fn: Callable[[Any], Any], name: Optional[str] = None):
        self._fn = fn
        self.name = name or getattr(fn, "__name__", repr(fn))

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self._fn)

    def invoke(self, input: Any) -> Any:
        result = self._fn(input)
        if inspect.isawaitable(result):
            _discard_awaitable(result)
            raise TypeError(
                f"Executor '{self.name}' is asynchronous; use run_async()"
            )
        return result

    async def ainvoke(self, input: Any) -> Any:
        result = self._fn(input)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"CallableExecutor({self.name!r})"


def _discard_awaitable(awaitable: Any) -> None:
    close = getattr(awaitable, "close", None)
    if close is not None:
        close()


def as_executor(obj: Any) -> Any:
    """Return an object usable as an executor.

    Objects exposing invoke() or ainvoke() are returned unchanged; other
    callables are wrapped in CallableExecutor.

    Raises:
        TypeError: If obj is neither an executor nor callable
    """
    if hasattr(obj, "invoke") or hasattr(obj, "ainvoke"):
        return obj
    if callable(obj):
        return CallableExecutor(obj)
    raise TypeError(f"Not an executor: {obj!r}")


def is_async_only(executor: Any) -> bool:
    """True when an executor can only be awaited.

    Covers objects with ainvoke() but no invoke(), coroutine invoke()
    methods, and CallableExecutors wrapping coroutine functions.
    """
    if isinstance(executor, CallableExecutor):
        return executor.is_async
    invoke = getattr(executor, "invoke", None)
    if invoke is None:
        return True
    return inspect.iscoroutinefunction(invoke)


def invoke_sync(executor: Any, input: Any) -> Any:
    """Invoke an executor from synchronous code.

    Raises:
        TypeError: If the executor can only be awaited
    """
    if not hasattr(executor, "invoke"):
        raise TypeError(f"Executor {executor!r} has no invoke(); use run_async()")
    result = executor.invoke(input)
    if inspect.isawaitable(result):
        _discard_awaitable(result)
        raise TypeError(f"Executor {executor!r} returned an awaitable; use run_async()")
    return result


async def invoke_async(executor: Any, input: Any) -> Any:
    """Invoke an executor from async code, awaiting when needed."""
    if hasattr(executor, "ainvoke"):
        return await executor.ainvoke(input)
    result = executor.invoke(input)
    if inspect.isawaitable(result):
        result = await result
    return result


class ExecutorResolver:
    """Resolves the executor bound to each task node.

    Resolution order:
    1. An executor object or callable set directly on the node
    2. A string reference on the node, looked up in the executor mapping
    3. No reference: the node's own name, looked up in the mapping
    """

    def __init__(self, executors: Optional[Mapping[str, Any]] = None):
        self._executors: Dict[str, Any] = dict(executors or {})

    def resolve(self, node: TaskNode) -> Any:
        """Resolve the executor for one node.

        Raises:
            UnresolvedExecutorError: If no usable executor is found
        """
        reference = node.executor if node.executor is not None else node.name

        if isinstance(reference, str):
            if reference not in self._executors:
                raise UnresolvedExecutorError(node.name, reference)
            target = self._executors[reference]
        else:
            target = reference

        try:
            return as_executor(target)
        except TypeError as e:
            raise UnresolvedExecutorError(node.name, reference) from e

    def resolve_all(self, graph: WorkflowGraph, sync: bool = False) -> Dict[str, Any]:
        """Resolve every node of a graph before a run starts.

        Args:
            graph: The graph about to run
            sync: True for synchronous runs, which cannot await executors

        Raises:
            UnresolvedExecutorError: If a node has no usable executor, or a
                synchronous run meets an executor that can only be awaited
        """
        resolved = {}
        for node in graph:
            executor = self.resolve(node)
            if sync and is_async_only(executor):
                raise UnresolvedExecutorError(
                    node.name,
                    node.executor if node.executor is not None else node.name,
                    reason="executor is asynchronous; use run_async()",
                )
            resolved[node.name] = executor
        return resolved
