"""Registry for workflow graphs.

Provides cached access to loaded workflow graphs by workflow_id.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from workgraph.domain.workflow.errors import GraphLoadError, GraphNotFoundError
from workgraph.domain.workflow.graph_loader import GraphLoader
from workgraph.domain.workflow.graph_models import WorkflowGraph

logger = logging.getLogger(__name__)


class GraphRegistry:
    """Registry for workflow graphs with caching.

    Usage:
        registry = GraphRegistry()
        registry.load_from_directory(Path("workflows"))
        graph = registry.get("emergency_response")
    """

    def __init__(self, loader: Optional[GraphLoader] = None):
        """Initialize registry with optional custom loader."""
        self.loader = loader or GraphLoader()
        self._graphs: Dict[str, WorkflowGraph] = {}

    def register(self, graph: WorkflowGraph) -> None:
        """Register a workflow graph.

        Raises:
            ValueError: If a graph with the same ID is already registered
        """
        if graph.workflow_id in self._graphs:
            raise ValueError(
                f"Graph already registered: {graph.workflow_id}. "
                "Use replace() to update."
            )
        self._graphs[graph.workflow_id] = graph

    def replace(self, graph: WorkflowGraph) -> None:
        """Replace an existing workflow graph (or register if new)."""
        self._graphs[graph.workflow_id] = graph

    def get(self, workflow_id: str) -> WorkflowGraph:
        """Get a workflow graph by ID.

        Raises:
            GraphNotFoundError: If graph not found
        """
        if workflow_id not in self._graphs:
            raise GraphNotFoundError(workflow_id, available=list(self._graphs.keys()))
        return self._graphs[workflow_id]

    def get_optional(self, workflow_id: str) -> Optional[WorkflowGraph]:
        """Get a workflow graph by ID, returning None if not found."""
        return self._graphs.get(workflow_id)

    def list_ids(self) -> List[str]:
        return list(self._graphs.keys())

    def list_graphs(self) -> List[WorkflowGraph]:
        return list(self._graphs.values())

    def has(self, workflow_id: str) -> bool:
        return workflow_id in self._graphs

    def clear(self) -> None:
        """Clear all registered graphs."""
        self._graphs.clear()

    def load_from_directory(self, directory: Path) -> int:
        """Load all workflow definitions from a directory.

        Returns:
            Number of graphs loaded
        """
        graphs = self.loader.load_all(directory)
        for graph in graphs:
            self.register(graph)
        return len(graphs)

    def load_file(self, path: Path) -> WorkflowGraph:
        """Load and register a single workflow definition.

        Raises:
            GraphLoadError: If loading fails
        """
        graph = self.loader.load(path)
        self.register(graph)
        return graph


# Global registry instance for convenience
_global_registry: Optional[GraphRegistry] = None


def get_graph_registry() -> GraphRegistry:
    """Get the global graph registry instance.

    Creates a new instance if one doesn't exist and auto-loads definitions
    from the configured workflows directory.
    """
    global _global_registry
    if _global_registry is None:
        from workgraph.settings import get_settings

        _global_registry = GraphRegistry()
        workflow_dir = Path(get_settings().workflows_dir)
        if workflow_dir.is_dir():
            try:
                count = _global_registry.load_from_directory(workflow_dir)
                logger.info(f"Loaded {count} workflow graphs from {workflow_dir}")
            except (GraphLoadError, ValueError) as e:
                logger.warning(f"Failed to auto-load workflows: {e}")
    return _global_registry


def reset_graph_registry() -> None:
    """Reset the global graph registry (useful for testing)."""
    global _global_registry
    _global_registry = None
