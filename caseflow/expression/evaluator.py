# Expression Evaluator for caseflow
# Evaluates gateway condition expressions against process variables

import logging
from typing import Any, Mapping

from caseflow.errors import ExpressionError
from caseflow.expression.lexer import Lexer
from caseflow.expression.parser import Parser
from caseflow.expression.syntax import Expr

logger = logging.getLogger(__name__)


def unwrap(raw: str) -> str:
    """Strip one ``${ ... }`` wrapper, if present."""
    trimmed = raw.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        return trimmed[2:-1]
    return trimmed


def parse(raw: str) -> Expr:
    """Tokenize and parse a raw expression into a syntax tree."""
    return Parser(Lexer(unwrap(raw).strip()).tokenize()).parse()


class ExpressionEvaluator:
    """
    Side-effect-free evaluator for gateway conditions.

    Expressions support ``&&``, ``||``, ``==``, ``!=``, ``<``, ``<=``, ``>``,
    ``>=``, unary ``!``, parentheses, boolean/number/string literals and
    identifiers resolved against a flat variable mapping. Unknown identifiers
    evaluate to ``None``.

    Example:
        evaluator = ExpressionEvaluator()
        evaluator.evaluate_boolean("${amount > 1000 && approved}", variables)
    """

    def evaluate_boolean(self, raw_expr: str, variables: Mapping[str, Any]) -> bool:
        """
        Evaluate an expression that must produce a boolean.

        Raises:
            ExpressionError: If the expression is empty, malformed, or does
                not evaluate to a boolean
        """
        if not unwrap(raw_expr).strip():
            raise ExpressionError(f"Empty expression: '{raw_expr}'")

        result = parse(raw_expr).evaluate(variables)
        if not isinstance(result, bool):
            raise ExpressionError(
                f"Expression '{raw_expr}' did not evaluate to a boolean (got {result!r})"
            )
        logger.debug(f"Expression '{raw_expr}' evaluated to {result}")
        return result

    def evaluate_any(self, raw_expr: str, variables: Mapping[str, Any]) -> Any:
        """Evaluate an expression and return its raw value."""
        return parse(raw_expr).evaluate(variables)
