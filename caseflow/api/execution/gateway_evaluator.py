# Gateway Evaluator for caseflow
# Selects outgoing flows of exclusive gateways and locates parallel joins

import logging
from typing import Any, Mapping, Optional

from caseflow.core.model import BaseNode, Container, ParallelGatewayNode, Transition
from caseflow.errors import ConfigurationError
from caseflow.expression import ExpressionEvaluator

logger = logging.getLogger(__name__)


class GatewayEvaluator:
    """
    Evaluates conditions on gateway outgoing flows.

    Exclusive gateways take the first outgoing flow, in declaration order,
    whose condition evaluates to true. When none matches, the flow marked as
    default is taken, and failing that the first outgoing flow.
    """

    def __init__(self, evaluator: Optional[ExpressionEvaluator] = None):
        self._evaluator = evaluator or ExpressionEvaluator()

    def select_exclusive(
        self, container: Container, gateway_id: str, variables: Mapping[str, Any]
    ) -> Transition:
        """
        Pick the outgoing transition of an exclusive gateway.

        Raises:
            ConfigurationError: If the gateway has no outgoing transitions
            ExpressionError: If a condition cannot be parsed or evaluated
        """
        outgoing = container.normal_outgoing(gateway_id)
        if not outgoing:
            raise ConfigurationError(f"Exclusive gateway '{gateway_id}' has no outgoing transitions")

        for transition in outgoing:
            if transition.is_default or not transition.condition_expression:
                continue
            if self._evaluator.evaluate_boolean(transition.condition_expression, variables):
                logger.debug(
                    f"Gateway {gateway_id}: condition {transition.condition_expression!r} "
                    f"matched, taking {transition.to_id}"
                )
                return transition

        default = next((t for t in outgoing if t.is_default), None)
        if default is not None:
            logger.debug(f"Gateway {gateway_id}: no condition matched, taking default flow")
            return default

        logger.debug(f"Gateway {gateway_id}: no condition matched and no default flow")
        return outgoing[0]

    # ==================== Parallel Joins ====================

    def is_join(self, container: Container, node: BaseNode) -> bool:
        """A parallel gateway with more than one incoming normal transition."""
        return (
            isinstance(node, ParallelGatewayNode)
            and len(container.normal_incoming(node.id)) > 1
        )

    def find_join(self, container: Container, split_id: str) -> Optional[str]:
        """
        First parallel gateway, other than the split, fed by a transition not
        originating at the split.
        """
        for node in container.nodes.values():
            if not isinstance(node, ParallelGatewayNode) or node.id == split_id:
                continue
            incoming = [t for t in container.transitions if t.to_id == node.id]
            if any(t.from_id != split_id for t in incoming):
                return node.id
        return None
