# Token definitions for the condition expression language

from enum import Enum
from typing import Any, NamedTuple


class TokenType(Enum):
    LPAREN = "("
    RPAREN = ")"
    BANG = "!"
    LESS = "<"
    LESS_EQUAL = "<="
    GREATER = ">"
    GREATER_EQUAL = ">="
    EQUAL_EQUAL = "=="
    BANG_EQUAL = "!="
    AND_AND = "&&"
    OR_OR = "||"
    IDENT = "identifier"
    NUMBER = "number"
    STRING = "string"
    TRUE = "true"
    FALSE = "false"
    EOF = "end of expression"


class Token(NamedTuple):
    type: TokenType
    lexeme: str
    literal: Any = None
