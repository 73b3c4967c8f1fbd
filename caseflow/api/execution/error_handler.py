# Error Handler for caseflow
# Routes business errors through boundary error transitions

import logging
from typing import Optional

from caseflow.core.model import Container, Transition
from caseflow.errors import BusinessError

logger = logging.getLogger(__name__)


class ErrorHandler:
    """
    Handles business errors raised at activities.

    A boundary error event compiles to a transition from the host activity
    carrying the caught error code. When an activity raises a BusinessError
    the matching transition's target becomes the next node; without a match
    the error is fatal for the instance.
    """

    def find_error_transition(
        self, container: Container, node_id: str, error_code: str
    ) -> Optional[Transition]:
        for transition in container.outgoing(node_id):
            if transition.error_code is not None and transition.error_code == error_code:
                return transition
        return None

    def handle_business_error(
        self, container: Container, node_id: str, error: BusinessError
    ) -> str:
        """
        Resolve the node to resume at after a business error.

        Args:
            container: Container holding the failing node
            node_id: Id of the node that raised the error
            error: The business error

        Returns:
            Id of the boundary transition's target node

        Raises:
            BusinessError: The original error, when no boundary transition matches
        """
        transition = self.find_error_transition(container, node_id, error.error_code)
        if transition is None:
            logger.error(
                f"Unhandled business error {error.error_code} at '{node_id}' "
                f"in '{container.id}': {error.message}"
            )
            raise error

        logger.info(
            f"Business error {error.error_code} at '{node_id}' caught by boundary, "
            f"continuing at '{transition.to_id}'"
        )
        return transition.to_id
