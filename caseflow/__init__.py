# caseflow - BPMN process compiler and case interpreter
# Core package initialization

__version__ = "1.0.0"

from .errors import (
    BusinessError,
    CaseflowError,
    CompilationError,
    CompiledProcessDecodeError,
    ConfigurationError,
    DefinitionNotFound,
    ExpressionError,
    ExpressionTypeError,
)
from .core import CompiledProcess
from .conversion import BpmnCompiler
from .expression import ExpressionEvaluator

__all__ = [
    "__version__",
    # Errors
    "BusinessError",
    "CaseflowError",
    "CompilationError",
    "CompiledProcessDecodeError",
    "ConfigurationError",
    "DefinitionNotFound",
    "ExpressionError",
    "ExpressionTypeError",
    # Compiler and model
    "BpmnCompiler",
    "CompiledProcess",
    "ExpressionEvaluator",
]
