# Messaging Package for caseflow
# Task handler registry and script execution

from .handler_registry import (
    FunctionTaskHandler,
    TaskHandler,
    TaskHandlerRegistry,
    load_handler_modules,
    task_handler,
)
from .script_runner import ScriptRunner

__all__ = [
    "FunctionTaskHandler",
    "TaskHandler",
    "TaskHandlerRegistry",
    "load_handler_modules",
    "task_handler",
    "ScriptRunner",
]
