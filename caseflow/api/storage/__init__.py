# Storage Package for caseflow
# Provides RDF-based persistence for process definitions

import os
from typing import Optional

from .base import BaseStorageService, META, PROC
from .definition_repository import DefinitionRecord, DefinitionRepository, DeploymentResult

# Shared repository instance
_shared_storage: Optional[DefinitionRepository] = None


def get_storage() -> DefinitionRepository:
    """
    Get or create the shared definition repository.

    Uses CASEFLOW_STORAGE_PATH to select where RDF files are persisted.
    """
    global _shared_storage
    if _shared_storage is None:
        storage_path = os.environ.get("CASEFLOW_STORAGE_PATH", "data/caseflow_rdf")
        _shared_storage = DefinitionRepository(BaseStorageService(storage_path))
    return _shared_storage


def reset_storage() -> None:
    """Reset the shared repository (useful for testing)."""
    global _shared_storage
    _shared_storage = None


__all__ = [
    "get_storage",
    "reset_storage",
    "BaseStorageService",
    "DefinitionRecord",
    "DefinitionRepository",
    "DeploymentResult",
    "META",
    "PROC",
]
