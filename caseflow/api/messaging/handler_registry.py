# Task Handler Registry for caseflow
# Maps handler keys to externally registered task handlers

import importlib
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from caseflow.errors import ConfigurationError

logger = logging.getLogger(__name__)


class TaskHandler(Protocol):
    """
    An externally defined unit of work bound to a service or script task.

    ``handle`` receives a private copy of the case variables. It may mutate
    that copy, return a mapping of updates, or both. Domain failures are
    signalled by raising ``BusinessError``.
    """

    key: str

    def handle(self, variables: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        ...


class FunctionTaskHandler:
    """Adapts a plain callable ``fn(variables)`` to the TaskHandler protocol."""

    def __init__(self, key: str, function: Callable, description: str = ""):
        self.key = key
        self.description = description
        self._function = function

    def handle(self, variables: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        return self._function(variables)

    def __repr__(self) -> str:
        return f"FunctionTaskHandler(key={self.key!r})"


def task_handler(key: str, description: str = "") -> Callable:
    """
    Decorator turning a function into a FunctionTaskHandler.

    Example:
        @task_handler("orders.reserveStock")
        def reserve_stock(variables):
            return {"reserved": True}
    """

    def decorator(function: Callable) -> FunctionTaskHandler:
        return FunctionTaskHandler(key, function, description or (function.__doc__ or ""))

    return decorator


class TaskHandlerRegistry:
    """
    Immutable lookup table from handler key to task handler.

    The registry is built once at startup from the full set of handlers.
    An unknown key is a deployment defect, so lookups fail with a
    ConfigurationError instead of returning None.
    """

    def __init__(self, handlers: Iterable[TaskHandler] = ()):
        """
        Build the registry.

        Args:
            handlers: Handlers keyed by their ``key`` attribute

        Raises:
            ConfigurationError: If two handlers declare the same key
        """
        self._handlers: Dict[str, TaskHandler] = {}
        for handler in handlers:
            key = getattr(handler, "key", None)
            if not key:
                raise ConfigurationError(f"Task handler {handler!r} declares no key")
            if key in self._handlers:
                raise ConfigurationError(f"Duplicate task handler key: {key}")
            self._handlers[key] = handler
            logger.info(f"Registered handler for key: {key}")

    def get(self, key: str) -> TaskHandler:
        """
        Get the handler registered for a key.

        Raises:
            ConfigurationError: If no handler is registered for the key
        """
        handler = self._handlers.get(key)
        if handler is None:
            raise ConfigurationError(
                f"No task handler registered for key '{key}' "
                f"(registered: {', '.join(sorted(self._handlers)) or 'none'})"
            )
        return handler

    def keys(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, key: str) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def execute(self, key: str, variables: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Execute a task handler.

        Args:
            key: The handler key
            variables: Current case variables (not mutated)

        Returns:
            The variables after handler execution

        Raises:
            ConfigurationError: If the key is unregistered or the handler
                returns something other than a mapping
            BusinessError: If the handler reports a domain failure
        """
        handler = self.get(key)
        working = dict(variables)

        logger.info(f"Executing task handler {key}")
        result = handler.handle(working)
        if result is not None:
            if not isinstance(result, Mapping):
                raise ConfigurationError(
                    f"Task handler '{key}' returned {type(result).__name__}, expected a mapping"
                )
            working.update(result)
        logger.debug(f"Task handler {key} completed")
        return working


def load_handler_modules(module_names: Iterable[str]) -> List[TaskHandler]:
    """
    Import handler modules and collect their ``TASK_HANDLERS``.

    ``TASK_HANDLERS`` is either an iterable of handlers or a mapping of
    key to callable, which is wrapped in FunctionTaskHandler.

    Raises:
        ConfigurationError: If a module cannot be imported or exposes no handlers
    """
    handlers: List[TaskHandler] = []
    for name in module_names:
        try:
            module = importlib.import_module(name)
        except ImportError as e:
            raise ConfigurationError(f"Cannot import handler module '{name}': {e}") from e

        declared = getattr(module, "TASK_HANDLERS", None)
        if declared is None:
            raise ConfigurationError(f"Handler module '{name}' defines no TASK_HANDLERS")

        if isinstance(declared, Mapping):
            handlers.extend(FunctionTaskHandler(key, fn) for key, fn in declared.items())
        else:
            handlers.extend(declared)
        logger.info(f"Loaded task handlers from module {name}")
    return handlers
