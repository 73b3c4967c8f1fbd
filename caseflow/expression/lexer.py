# Lexer for the condition expression language
# Turns raw expression text into a flat list of tokens

from typing import List

from caseflow.errors import ExpressionError
from caseflow.expression.tokens import Token, TokenType

KEYWORDS = {
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
}

# Two-character operators first so "<=" is not read as "<" followed by "="
OPERATORS = {
    "&&": TokenType.AND_AND,
    "||": TokenType.OR_OR,
    "==": TokenType.EQUAL_EQUAL,
    "!=": TokenType.BANG_EQUAL,
    "<=": TokenType.LESS_EQUAL,
    ">=": TokenType.GREATER_EQUAL,
    "<": TokenType.LESS,
    ">": TokenType.GREATER,
    "!": TokenType.BANG,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
}


def _is_ident_start(char: str) -> bool:
    return char.isalpha() or char in "_$"


def _is_ident_part(char: str) -> bool:
    return _is_ident_start(char) or char.isdigit()


class Lexer:
    """Single-pass scanner over an expression string."""

    def __init__(self, source: str):
        self._source = source
        self._tokens: List[Token] = []
        self._start = 0
        self._current = 0

    def tokenize(self) -> List[Token]:
        while not self._at_end():
            self._start = self._current
            self._scan_token()
        self._tokens.append(Token(TokenType.EOF, ""))
        return self._tokens

    def _at_end(self) -> bool:
        return self._current >= len(self._source)

    def _scan_token(self) -> None:
        char = self._source[self._current]

        if char.isspace():
            self._current += 1
            return

        if char in "\"'":
            self._string(char)
            return

        if char.isdigit():
            self._number()
            return

        if _is_ident_start(char):
            self._identifier()
            return

        for text, token_type in OPERATORS.items():
            if self._source.startswith(text, self._current):
                self._current += len(text)
                self._tokens.append(Token(token_type, text))
                return

        raise ExpressionError(
            f"Unexpected character '{char}' at position {self._current} "
            f"in expression: '{self._source}'"
        )

    def _string(self, quote: str) -> None:
        end = self._source.find(quote, self._current + 1)
        if end < 0:
            raise ExpressionError(f"Unterminated string in expression: '{self._source}'")
        value = self._source[self._current + 1 : end]
        self._current = end + 1
        self._tokens.append(
            Token(TokenType.STRING, self._source[self._start : self._current], value)
        )

    def _number(self) -> None:
        while not self._at_end() and self._source[self._current].isdigit():
            self._current += 1
        if not self._at_end() and self._source[self._current] == ".":
            self._current += 1
            while not self._at_end() and self._source[self._current].isdigit():
                self._current += 1
        text = self._source[self._start : self._current]
        self._tokens.append(Token(TokenType.NUMBER, text, float(text)))

    def _identifier(self) -> None:
        while not self._at_end() and _is_ident_part(self._source[self._current]):
            self._current += 1
        text = self._source[self._start : self._current]
        self._tokens.append(Token(KEYWORDS.get(text, TokenType.IDENT), text))
