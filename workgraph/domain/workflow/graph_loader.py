"""Loader for workflow graph definitions.

Loads, validates, and parses JSON or YAML definitions into WorkflowGraphs.
Executors are referenced by name in definitions and resolved at run time.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from workgraph.domain.workflow.errors import GraphLoadError
from workgraph.domain.workflow.graph_models import TaskNode, WorkflowGraph
from workgraph.domain.workflow.graph_validator import GraphValidator, normalize_task

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".json", ".yaml", ".yml")


def task_from_dict(raw: Dict[str, Any]) -> TaskNode:
    """Create a TaskNode from a (possibly aliased) task dict."""
    task, _ = normalize_task(raw)
    return TaskNode(
        name=task["name"],
        description=task.get("description", ""),
        expected_output=task.get("expected_output", ""),
        executor=task.get("executor"),
        is_start=task.get("is_start", False),
        static_successors=tuple(task.get("static_successors", [])),
        decision_table=task.get("decision_table"),
        context_inputs=tuple(task.get("context_inputs", [])),
    )


def graph_from_dict(raw: Dict[str, Any]) -> WorkflowGraph:
    """Create a WorkflowGraph from a definition dict (no schema validation)."""
    return WorkflowGraph(
        nodes=tuple(task_from_dict(t) for t in raw["tasks"]),
        workflow_id=raw["workflow_id"],
        version=str(raw.get("version", "1.0.0")),
        description=raw.get("description", ""),
    )


def graph_to_dict(graph: WorkflowGraph) -> Dict[str, Any]:
    """Serialize a graph to its canonical definition dict.

    Only string executor references survive serialization.
    """
    tasks = []
    for node in graph:
        task: Dict[str, Any] = {"name": node.name}
        if node.description:
            task["description"] = node.description
        if node.expected_output:
            task["expected_output"] = node.expected_output
        if isinstance(node.executor, str):
            task["executor"] = node.executor
        if node.is_start:
            task["is_start"] = True
        if node.static_successors:
            task["static_successors"] = list(node.static_successors)
        if node.decision_table is not None:
            task["decision_table"] = node.decision_table.to_dict()
        if node.context_inputs:
            task["context_inputs"] = list(node.context_inputs)
        tasks.append(task)

    return {
        "workflow_id": graph.workflow_id,
        "version": graph.version,
        "description": graph.description,
        "tasks": tasks,
    }


class GraphLoader:
    """Load and parse workflow graph definitions.

    Usage:
        loader = GraphLoader()
        graph = loader.load(Path("workflows/emergency_response.yaml"))
    """

    def __init__(self, validator: Optional[GraphValidator] = None):
        """Initialize loader with optional custom validator."""
        self.validator = validator or GraphValidator()

    def load(self, path: Path) -> WorkflowGraph:
        """Load a workflow graph from a .json, .yaml or .yml file.

        Raises:
            GraphLoadError: If the file is missing, unparsable or invalid
        """
        path = Path(path)
        if path.suffix not in DEFINITION_SUFFIXES:
            raise GraphLoadError(f"Unsupported definition format: {path}")

        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                if path.suffix == ".json":
                    raw = json.load(f)
                else:
                    raw = yaml.safe_load(f)
        except FileNotFoundError:
            raise GraphLoadError(f"Workflow definition file not found: {path}")
        except OSError as e:
            raise GraphLoadError(f"Cannot read workflow definition {path}: {e}")
        except UnicodeDecodeError as e:
            raise GraphLoadError(f"Workflow definition {path} is not valid UTF-8: {e}")
        except json.JSONDecodeError as e:
            raise GraphLoadError(f"Invalid JSON in {path}: {e}")
        except yaml.YAMLError as e:
            raise GraphLoadError(f"Invalid YAML in {path}: {e}")

        return self.load_dict(raw, source_path=str(path))

    def load_dict(
        self,
        raw: Dict[str, Any],
        source_path: Optional[str] = None,
    ) -> WorkflowGraph:
        """Load a workflow graph from a dictionary.

        Args:
            raw: Raw definition dict
            source_path: Optional source path for error messages

        Raises:
            GraphLoadError: If validation fails
        """
        result = self.validator.validate(raw)
        source = f" in {source_path}" if source_path else ""
        if not result.valid:
            raise GraphLoadError(
                f"Workflow definition validation failed{source} "
                f"with {len(result.errors)} error(s)",
                errors=result.errors,
            )

        for warning in result.warnings:
            logger.warning(f"Workflow definition{source}: {warning.message}")

        return graph_from_dict(raw)

    def load_all(self, directory: Path) -> List[WorkflowGraph]:
        """Load every definition file in a directory.

        Files that fail to load are skipped and logged.
        """
        graphs = []
        for path in sorted(Path(directory).iterdir()):
            if path.suffix not in DEFINITION_SUFFIXES or not path.is_file():
                continue
            try:
                graphs.append(self.load(path))
                logger.debug(f"Loaded workflow definition {path}")
            except GraphLoadError as e:
                logger.warning(f"Failed to load workflow definition {path}: {e}")
        return graphs
