# Execution Package for caseflow
# Provides process execution components

from .substrate import AsyncioSubstrate, ExecutionSubstrate
from .gateway_evaluator import GatewayEvaluator
from .error_handler import ErrorHandler
from .interpreter import ProcessInterpreter
from .case_service import CaseNotFound, CaseRecord, CaseService

__all__ = [
    "AsyncioSubstrate",
    "ExecutionSubstrate",
    "GatewayEvaluator",
    "ErrorHandler",
    "ProcessInterpreter",
    "CaseNotFound",
    "CaseRecord",
    "CaseService",
]
