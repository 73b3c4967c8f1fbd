# Expression Package for caseflow
# Lexer, parser and evaluator for gateway condition expressions

from .tokens import Token, TokenType
from .lexer import Lexer
from .parser import Parser
from .evaluator import ExpressionEvaluator, parse, unwrap

__all__ = [
    "Token",
    "TokenType",
    "Lexer",
    "Parser",
    "ExpressionEvaluator",
    "parse",
    "unwrap",
]
