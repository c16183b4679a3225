"""Validator for workflow graph definitions.

Validates both schema structure and graph integrity of raw definitions
(e.g. parsed JSON or YAML) before they are turned into a WorkflowGraph.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

import jsonschema


class GraphValidationErrorCode(str, Enum):
    """Error codes for graph definition validation failures."""
    # Schema errors
    SCHEMA_INVALID = "SCHEMA_INVALID"
    CONFLICTING_ALIAS = "CONFLICTING_ALIAS"

    # Graph integrity errors
    DUPLICATE_NODE = "DUPLICATE_NODE"
    DANGLING_REFERENCE = "DANGLING_REFERENCE"
    NO_START_NODE = "NO_START_NODE"
    AMBIGUOUS_TRANSITION = "AMBIGUOUS_TRANSITION"

    # Warnings
    UNREACHABLE_NODE = "UNREACHABLE_NODE"


@dataclass
class GraphValidationError:
    """A single validation error."""
    code: GraphValidationErrorCode
    message: str
    path: str = ""  # JSON path to the error location

    def __str__(self) -> str:
        if self.path:
            return f"[{self.code.value}] {self.path}: {self.message}"
        return f"[{self.code.value}] {self.message}"


@dataclass
class GraphValidationResult:
    """Result of graph definition validation."""
    valid: bool
    errors: List[GraphValidationError] = field(default_factory=list)
    warnings: List[GraphValidationError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


# Field names used by agent/task documentation, mapped to canonical names
TASK_FIELD_ALIASES = {
    "next_tasks": "static_successors",
    "condition": "decision_table",
    "context": "context_inputs",
    "agent": "executor",
}

_NAME_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}

TASK_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "expected_output": {"type": "string"},
        "executor": {"type": "string", "minLength": 1},
        "agent": {"type": "string", "minLength": 1},
        "is_start": {"type": "boolean"},
        "static_successors": _NAME_LIST,
        "next_tasks": _NAME_LIST,
        "decision_table": {"$ref": "#/$defs/decision_table"},
        "condition": {"$ref": "#/$defs/decision_table"},
        "context_inputs": _NAME_LIST,
        "context": _NAME_LIST,
    },
}

GRAPH_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["workflow_id", "tasks"],
    "properties": {
        "workflow_id": {"type": "string", "minLength": 1},
        "version": {"type": "string"},
        "description": {"type": "string"},
        "tasks": {"type": "array", "minItems": 1, "items": TASK_SCHEMA},
    },
    "$defs": {
        "decision_table": {
            "type": "object",
            "additionalProperties": {
                "anyOf": [
                    {"type": "null"},
                    {"type": "string"},
                    _NAME_LIST,
                ],
            },
        },
    },
}


def normalize_task(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Map alias fields to canonical names.

    Returns:
        Tuple of (normalized task dict, aliases that conflict with a
        canonical field also present)
    """
    normalized = dict(raw)
    conflicts: List[str] = []
    for alias, canonical in TASK_FIELD_ALIASES.items():
        if alias not in normalized:
            continue
        value = normalized.pop(alias)
        if canonical in raw:
            conflicts.append(alias)
            continue
        normalized[canonical] = value
    return normalized, conflicts


def decision_targets(table: Dict[Any, Any]) -> List[str]:
    """Successor names referenced by a raw decision table."""
    targets: List[str] = []
    for value in table.values():
        if isinstance(value, str):
            if value:
                targets.append(value)
        elif isinstance(value, list):
            targets.extend(value)
    return targets


class GraphValidator:
    """Validates workflow graph definitions.

    Validation Rules:
    1. The definition matches GRAPH_SCHEMA
    2. Alias fields do not conflict with canonical fields
    3. Task names are unique
    4. No task declares both static successors and a decision table
    5. All successors, decision targets and context inputs exist
    6. At least one task is a start task
    Warnings: tasks unreachable from every start task
    """

    def __init__(self, schema: Dict[str, Any] = None):
        self.schema = schema or GRAPH_SCHEMA
        self._validator = jsonschema.Draft202012Validator(self.schema)

    def validate(self, raw: Any) -> GraphValidationResult:
        """Validate a graph definition.

        Args:
            raw: Raw definition dict (e.g., from JSON or YAML)

        Returns:
            GraphValidationResult with validation status and any errors
        """
        errors: List[GraphValidationError] = []
        warnings: List[GraphValidationError] = []

        # Phase 1: Schema validation
        self._validate_schema(raw, errors)

        # If schema is invalid, stop here
        if errors:
            return GraphValidationResult(valid=False, errors=errors)

        tasks = self._normalize_tasks(raw["tasks"], errors)
        if errors:
            return GraphValidationResult(valid=False, errors=errors)

        # Phase 2: Graph integrity
        self._validate_integrity(tasks, errors)

        # Phase 3: Reachability (warnings only)
        if not errors:
            self._check_reachability(tasks, warnings)

        return GraphValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def _validate_schema(
        self,
        raw: Any,
        errors: List[GraphValidationError],
    ) -> None:
        """Collect every schema violation, not just the first."""
        errors_found = sorted(
            self._validator.iter_errors(raw),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
        for error in errors_found:
            path = "$" + "".join(
                f"[{p}]" if isinstance(p, int) else f".{p}"
                for p in error.absolute_path
            )
            errors.append(GraphValidationError(
                code=GraphValidationErrorCode.SCHEMA_INVALID,
                message=error.message,
                path=path,
            ))

    def _normalize_tasks(
        self,
        raw_tasks: List[Dict[str, Any]],
        errors: List[GraphValidationError],
    ) -> List[Dict[str, Any]]:
        tasks = []
        for i, raw_task in enumerate(raw_tasks):
            task, conflicts = normalize_task(raw_task)
            for alias in conflicts:
                errors.append(GraphValidationError(
                    code=GraphValidationErrorCode.CONFLICTING_ALIAS,
                    message=(
                        f"Task '{task['name']}' sets both '{alias}' and "
                        f"'{TASK_FIELD_ALIASES[alias]}'"
                    ),
                    path=f"$.tasks[{i}].{alias}",
                ))
            tasks.append(task)
        return tasks

    def _validate_integrity(
        self,
        tasks: List[Dict[str, Any]],
        errors: List[GraphValidationError],
    ) -> None:
        names = set()
        for i, task in enumerate(tasks):
            name = task["name"]
            if name in names:
                errors.append(GraphValidationError(
                    code=GraphValidationErrorCode.DUPLICATE_NODE,
                    message=f"Duplicate task name: '{name}'",
                    path=f"$.tasks[{i}].name",
                ))
            names.add(name)

        for i, task in enumerate(tasks):
            name = task["name"]
            if task.get("static_successors") and task.get("decision_table") is not None:
                errors.append(GraphValidationError(
                    code=GraphValidationErrorCode.AMBIGUOUS_TRANSITION,
                    message=(
                        f"Task '{name}' declares both static_successors "
                        "and decision_table"
                    ),
                    path=f"$.tasks[{i}]",
                ))

            references = (
                ("static_successors", task.get("static_successors", [])),
                ("decision_table", decision_targets(task.get("decision_table") or {})),
                ("context_inputs", task.get("context_inputs", [])),
            )
            for field_name, targets in references:
                for target in targets:
                    if target not in names:
                        errors.append(GraphValidationError(
                            code=GraphValidationErrorCode.DANGLING_REFERENCE,
                            message=f"Task '{name}' references unknown task '{target}'",
                            path=f"$.tasks[{i}].{field_name}",
                        ))

        if not any(task.get("is_start", False) for task in tasks):
            errors.append(GraphValidationError(
                code=GraphValidationErrorCode.NO_START_NODE,
                message="No task has is_start: true",
                path="$.tasks",
            ))

    def _check_reachability(
        self,
        tasks: List[Dict[str, Any]],
        warnings: List[GraphValidationError],
    ) -> None:
        by_name = {task["name"]: task for task in tasks}
        reached = set()
        stack = [task["name"] for task in tasks if task.get("is_start", False)]
        while stack:
            name = stack.pop()
            if name in reached:
                continue
            reached.add(name)
            task = by_name[name]
            stack.extend(task.get("static_successors", []))
            stack.extend(decision_targets(task.get("decision_table") or {}))

        for i, task in enumerate(tasks):
            if task["name"] not in reached:
                warnings.append(GraphValidationError(
                    code=GraphValidationErrorCode.UNREACHABLE_NODE,
                    message=f"Task '{task['name']}' is unreachable from any start task",
                    path=f"$.tasks[{i}]",
                ))
