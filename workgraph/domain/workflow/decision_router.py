"""Decision router for task-graph workflows.

Determines which nodes a completed node activates.

INVARIANTS:
- Router performs control, not work
- Routing is a pure function of (node, output); no state is consulted
- Plain nodes activate their static successors in listed order
- Decision nodes look up the raw output in their decision table; an output
  that is not a key is an error, never a silent no-op
"""

import logging
from typing import Any, Tuple

from workgraph.domain.workflow.errors import UnknownOutcomeError
from workgraph.domain.workflow.graph_models import FAILED_OUTCOME, WorkflowGraph

logger = logging.getLogger(__name__)


class DecisionRouter:
    """Routes workflow execution from a completed node to its successors.

    The DecisionRouter is the ONLY component that makes routing decisions.
    Executors return outputs; the router decides what runs next.
    """

    def __init__(self, graph: WorkflowGraph):
        """Initialize router with a workflow graph.

        Args:
            graph: The WorkflowGraph containing the nodes to route between
        """
        self.graph = graph

    def next_nodes(
        self,
        node_name: str,
        output: Any,
        failed: bool = False,
    ) -> Tuple[str, ...]:
        """Determine the nodes activated by a completed node.

        Args:
            node_name: The node that just executed
            output: The executor's raw output
            failed: True when the executor raised and the failure was recorded

        Returns:
            Activated node names in listed order (empty when the branch ends)

        Raises:
            UnknownOutcomeError: If a decision node's output is not in its table
        """
        node = self.graph.get(node_name)

        if not node.is_decision:
            successors = node.static_successors
            logger.debug(f"Routing: {node_name} --> {list(successors) or '(end)'}")
            return successors

        table = node.decision_table
        outcome = FAILED_OUTCOME if failed else output

        if failed and not table.has_outcome(FAILED_OUTCOME):
            logger.warning(
                f"Decision node {node_name} failed and has no "
                f"'{FAILED_OUTCOME}' branch; ending branch"
            )
            return ()

        try:
            successors = table.resolve(outcome)
        except KeyError:
            raise UnknownOutcomeError(
                node_name, outcome, sorted(table.outcomes, key=repr)
            )

        logger.info(
            f"Routing: {node_name} --[{outcome!r}]--> "
            f"{list(successors) or '(end)'}"
        )
        return successors
