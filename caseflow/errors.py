# Error taxonomy for caseflow
# Every failure the compiler, store and interpreter raise derives from CaseflowError

from typing import Optional


class CaseflowError(Exception):
    """Base class for all caseflow errors."""


class CompilationError(CaseflowError):
    """
    The source process description is malformed or incomplete.

    Surfaced to the deployer, never retried.
    """

    def __init__(self, process_key: str, defect: str):
        self.process_key = process_key
        self.defect = defect
        super().__init__(f"Cannot compile process '{process_key}': {defect}")


class CompiledProcessDecodeError(CaseflowError):
    """A serialized compiled process could not be decoded."""


class DefinitionNotFound(CaseflowError):
    """No definition exists for the requested process key/version."""


class ConfigurationError(CaseflowError):
    """A deployment defect: unknown handler, bad script format, broken graph."""


class ExpressionError(CaseflowError):
    """An expression could not be parsed or evaluated."""


class ExpressionTypeError(ExpressionError, TypeError):
    """Operands of an ordering comparison are absent or of mismatched kinds."""


class BusinessError(CaseflowError):
    """
    A domain-level failure raised by a task handler or a script.

    The error code selects a boundary error transition on the failing node.
    """

    def __init__(self, error_code: str, message: Optional[str] = None):
        self.error_code = error_code
        self.message = message or f"Business error {error_code}"
        super().__init__(self.message)

    def __reduce__(self):
        return (type(self), (self.error_code, self.message))
