# Process Definition API Endpoints
# REST API for deploying and inspecting compiled process definitions

import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, Query

from caseflow.api.models import (
    DefinitionDeployRequest,
    DefinitionListResponse,
    DefinitionRecordResponse,
    DefinitionSummary,
    DeploymentResponse,
)
from caseflow.api.storage import DefinitionRepository, get_storage
from caseflow.core.model import CompiledProcess

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/definitions", tags=["Process Definitions"])


def summarize(compiled: CompiledProcess, process_key: str) -> DefinitionSummary:
    """Node/transition counts of a compiled process deployed under ``process_key``."""
    nodes = list(compiled.iter_nodes())
    return DefinitionSummary(
        process_key=process_key,
        version=compiled.version,
        compiled_process_key=compiled.process_key,
        node_count=len(nodes),
        transition_count=len(compiled.transitions),
        event_subprocess_count=len(compiled.event_subprocesses),
        nodes_by_type=dict(Counter(node.kind for node in nodes)),
    )


@router.post("", response_model=DeploymentResponse, status_code=201)
async def deploy_definition(
    request: DefinitionDeployRequest,
    storage: DefinitionRepository = Depends(get_storage),
):
    """
    Deploy BPMN XML as the next version of a process key.

    Compilation errors are returned as 400.
    """
    result = storage.deploy(request.process_key, request.xml)
    for warning in result.warnings:
        logger.warning(warning)

    return DeploymentResponse(
        process_key=result.record.process_key,
        version=result.record.version,
        compiled_process_key=result.compiled.process_key,
        summary=summarize(result.compiled, result.record.process_key),
        warnings=result.warnings,
    )


@router.get("", response_model=DefinitionListResponse)
async def list_definitions(
    process_key: Optional[str] = Query(None, alias="processKey", description="Filter by key"),
    storage: DefinitionRepository = Depends(get_storage),
):
    """List every deployed definition version."""
    records = storage.list_definitions(process_key)
    return DefinitionListResponse(
        definitions=[DefinitionRecordResponse(**vars(r)) for r in records],
        total=len(records),
    )


@router.get("/{process_key}", response_model=DefinitionSummary)
async def get_definition(
    process_key: str,
    version: Optional[int] = Query(None, ge=1, description="Version, latest active when omitted"),
    storage: DefinitionRepository = Depends(get_storage),
):
    """Summary of the latest active (or a specific) version of a process key."""
    if version is None:
        compiled = storage.latest(process_key)
    else:
        compiled = storage.by_version(process_key, version)
    return summarize(compiled, process_key)
