# Compiled Process Codec for caseflow
# JSON and plain-dict forms of a CompiledProcess for persistence
#
# The serialized form is a cache of the compiled artifact, not the source of
# truth: callers that fail to decode it recompile from the stored BPMN XML.

from typing import Any, Dict

from pydantic import ValidationError

from caseflow.core.model import CompiledProcess
from caseflow.errors import CompiledProcessDecodeError


def to_dict(process: CompiledProcess) -> Dict[str, Any]:
    """Return a JSON-compatible dict with camelCase keys."""
    return process.model_dump(mode="json", by_alias=True)


def from_dict(data: Dict[str, Any]) -> CompiledProcess:
    try:
        return CompiledProcess.model_validate(data)
    except ValidationError as e:
        raise CompiledProcessDecodeError(f"Invalid compiled process: {e}") from e


def to_json(process: CompiledProcess) -> str:
    return process.model_dump_json(by_alias=True)


def from_json(text: str) -> CompiledProcess:
    try:
        return CompiledProcess.model_validate_json(text)
    except (ValidationError, ValueError) as e:
        raise CompiledProcessDecodeError(f"Invalid compiled process JSON: {e}") from e
