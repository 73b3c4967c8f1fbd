# Recursive-descent parser for the condition expression language
#
# Grammar, lowest precedence first:
#   or         -> and ( "||" and )*
#   and        -> equality ( "&&" equality )*
#   equality   -> comparison ( ( "==" | "!=" ) comparison )*
#   comparison -> unary ( ( "<" | "<=" | ">" | ">=" ) unary )*
#   unary      -> "!" unary | primary
#   primary    -> "true" | "false" | NUMBER | STRING | IDENT | "(" or ")"

from typing import List

from caseflow.errors import ExpressionError
from caseflow.expression.syntax import Binary, Expr, Literal, Unary, Variable
from caseflow.expression.tokens import Token, TokenType


class Parser:
    def __init__(self, tokens: List[Token]):
        self._tokens = tokens
        self._current = 0

    def parse(self) -> Expr:
        expr = self._or()
        self._expect(TokenType.EOF)
        return expr

    def _binary(self, operand, *operators: TokenType) -> Expr:
        expr = operand()
        while self._match(*operators):
            op = self._previous().type
            expr = Binary(expr, op, operand())
        return expr

    def _or(self) -> Expr:
        return self._binary(self._and, TokenType.OR_OR)

    def _and(self) -> Expr:
        return self._binary(self._equality, TokenType.AND_AND)

    def _equality(self) -> Expr:
        return self._binary(
            self._comparison, TokenType.EQUAL_EQUAL, TokenType.BANG_EQUAL
        )

    def _comparison(self) -> Expr:
        return self._binary(
            self._unary,
            TokenType.LESS,
            TokenType.LESS_EQUAL,
            TokenType.GREATER,
            TokenType.GREATER_EQUAL,
        )

    def _unary(self) -> Expr:
        if self._match(TokenType.BANG):
            return Unary(TokenType.BANG, self._unary())
        return self._primary()

    def _primary(self) -> Expr:
        if self._match(TokenType.FALSE):
            return Literal(False)
        if self._match(TokenType.TRUE):
            return Literal(True)
        if self._match(TokenType.NUMBER, TokenType.STRING):
            return Literal(self._previous().literal)
        if self._match(TokenType.IDENT):
            return Variable(self._previous().lexeme)
        if self._match(TokenType.LPAREN):
            expr = self._or()
            self._expect(TokenType.RPAREN)
            return expr
        raise ExpressionError(f"Expected expression but found {self._peek().type.value}")

    # ==================== Token Cursor ====================

    def _match(self, *types: TokenType) -> bool:
        if self._peek().type in types:
            self._current += 1
            return True
        return False

    def _expect(self, token_type: TokenType) -> None:
        if not self._match(token_type):
            raise ExpressionError(
                f"Expected {token_type.value} but found {self._peek().type.value}"
            )

    def _peek(self) -> Token:
        return self._tokens[self._current]

    def _previous(self) -> Token:
        return self._tokens[self._current - 1]
