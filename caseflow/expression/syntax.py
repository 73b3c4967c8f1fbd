# Syntax tree for the condition expression language
# Each node evaluates itself against a flat variable mapping

from dataclasses import dataclass
from numbers import Real
from typing import Any, Mapping

from caseflow.errors import ExpressionError, ExpressionTypeError
from caseflow.expression.tokens import TokenType


class Expr:
    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        raise NotImplementedError


def _as_bool(value: Any) -> bool:
    """Logical operators treat anything that is not a boolean as false."""
    return value if isinstance(value, bool) else False


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def compare(left: Any, right: Any, op: TokenType) -> bool:
    if left is None or right is None:
        raise ExpressionTypeError(
            f"Cannot compare absent values: {left!r} {op.value} {right!r}"
        )

    if _is_number(left) and _is_number(right):
        left, right = float(left), float(right)
    elif not (isinstance(left, str) and isinstance(right, str)):
        raise ExpressionTypeError(
            f"Cannot compare values of different or unsupported types: "
            f"{left!r} ({type(left).__name__}) and {right!r} ({type(right).__name__})"
        )

    if op is TokenType.LESS:
        return left < right
    if op is TokenType.LESS_EQUAL:
        return left <= right
    if op is TokenType.GREATER:
        return left > right
    if op is TokenType.GREATER_EQUAL:
        return left >= right
    raise ExpressionError(f"Invalid comparison operator {op.value}")


@dataclass(frozen=True)
class Literal(Expr):
    value: Any

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class Variable(Expr):
    name: str

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        return variables.get(self.name)


@dataclass(frozen=True)
class Unary(Expr):
    op: TokenType
    operand: Expr

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        value = self.operand.evaluate(variables)
        if self.op is TokenType.BANG:
            return not _as_bool(value)
        raise ExpressionError(f"Unsupported unary operator {self.op.value}")


@dataclass(frozen=True)
class Binary(Expr):
    left: Expr
    op: TokenType
    right: Expr

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        # Both operands are always evaluated; there is no short-circuiting.
        left = self.left.evaluate(variables)
        right = self.right.evaluate(variables)

        if self.op is TokenType.AND_AND:
            return _as_bool(left) and _as_bool(right)
        if self.op is TokenType.OR_OR:
            return _as_bool(left) or _as_bool(right)
        if self.op is TokenType.EQUAL_EQUAL:
            return values_equal(left, right)
        if self.op is TokenType.BANG_EQUAL:
            return not values_equal(left, right)
        if self.op in (
            TokenType.LESS,
            TokenType.LESS_EQUAL,
            TokenType.GREATER,
            TokenType.GREATER_EQUAL,
        ):
            return compare(left, right, self.op)
        raise ExpressionError(f"Unsupported binary operator {self.op.value}")
