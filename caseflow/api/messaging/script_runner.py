# Script Runner for caseflow
# Executes script task bodies against the case variables

import ast
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from caseflow.errors import BusinessError, ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"python"}

SAFE_BUILTINS = {
    "print": print,
    "len": len,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "dict": dict,
    "list": list,
    "set": set,
    "tuple": tuple,
    "range": range,
    "enumerate": enumerate,
    "sorted": sorted,
    "any": any,
    "all": all,
    "zip": zip,
    "isinstance": isinstance,
}

FORBIDDEN_CALLS = {"eval", "exec", "compile", "open", "input"}

RESERVED_NAMES = {"variables", "execution"}


class ScriptExecution:
    """The ``execution`` object visible to scripts."""

    def __init__(self, variables: Dict[str, Any], handler_key: Optional[str]):
        self._variables = variables
        self.handler_key = handler_key

    def get_variable(self, name: str, default: Any = None) -> Any:
        return self._variables.get(name, default)

    def set_variable(self, name: str, value: Any) -> None:
        self._variables[name] = value

    def get_variables(self) -> Dict[str, Any]:
        return dict(self._variables)


class ScriptRunner:
    """
    Runs script task bodies.

    Only Python scripts are accepted. A script sees every case variable as a
    top-level name, plus ``variables`` (the mutable variable dict),
    ``execution`` (get_variable/set_variable) and ``BusinessError`` so it can
    raise domain failures routed through boundary error transitions.
    """

    def run(
        self,
        script: str,
        script_format: Optional[str],
        variables: Mapping[str, Any],
        handler_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Execute a script.

        Args:
            script: Script source
            script_format: Declared script language
            variables: Current case variables (not mutated)
            handler_key: Handler key of the script task, exposed to the script

        Returns:
            The variables after the script ran

        Raises:
            ConfigurationError: Unsupported format, invalid or unsafe script
            BusinessError: Raised by the script itself
        """
        if (script_format or "").strip().lower() not in SUPPORTED_FORMATS:
            raise ConfigurationError(f"Unsupported script format: {script_format}")

        self.validate(script)

        working = dict(variables)
        initial = dict(working)
        local_vars: Dict[str, Any] = dict(working)
        local_vars["variables"] = working
        local_vars["execution"] = ScriptExecution(working, handler_key)

        safe_globals = {
            "__builtins__": SAFE_BUILTINS,
            "datetime": datetime,
            "timedelta": timedelta,
            "BusinessError": BusinessError,
        }

        logger.debug(f"Running script for {handler_key or 'anonymous script task'}")
        exec(script, safe_globals, local_vars)

        # Top-level assignments win over unchanged names
        for name, value in local_vars.items():
            if name in RESERVED_NAMES or name.startswith("_"):
                continue
            if name not in initial or value is not initial[name]:
                working[name] = value
        return working

    def validate(self, script: str) -> None:
        """Reject unsafe syntax before executing a script."""
        try:
            tree = ast.parse(script or "", mode="exec")
        except SyntaxError as e:
            raise ConfigurationError(f"Script does not compile: {e}") from e

        for node in ast.walk(tree):
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                raise ConfigurationError("Script imports are not allowed")
            if isinstance(node, (ast.Global, ast.Nonlocal)):
                raise ConfigurationError("Global/nonlocal statements are not allowed")
            if isinstance(node, ast.Attribute) and node.attr.startswith("__"):
                raise ConfigurationError("Dunder attribute access is not allowed")
            if isinstance(node, ast.Name) and node.id.startswith("__"):
                raise ConfigurationError("Dunder names are not allowed")
            if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
                if node.func.id in FORBIDDEN_CALLS:
                    raise ConfigurationError(f"Call to {node.func.id} is not allowed")
