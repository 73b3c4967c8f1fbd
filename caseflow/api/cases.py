# Case API Endpoints
# REST API for starting, signalling, querying and terminating cases
#
# Endpoints are ``async def`` so they run on the event loop that drives the
# case interpreters.

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from caseflow.api.execution import CaseService
from caseflow.api.models import (
    BulkTerminateRequest,
    CaseResponse,
    CaseStartRequest,
    CaseStartResponse,
    CaseStateResponse,
    EventRequest,
    TerminateRequest,
    TerminateResult,
    UserTaskCompleteRequest,
    UserTaskCompleteResponse,
    UserTaskInfoResponse,
)
from caseflow.api.storage import get_storage
from caseflow.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])

# Shared case service
_case_service: Optional[CaseService] = None


def get_case_service() -> CaseService:
    """Get or create the shared case service."""
    global _case_service
    if _case_service is None:
        _case_service = CaseService.from_settings(get_storage(), Settings.from_env())
    return _case_service


def peek_case_service() -> Optional[CaseService]:
    """The shared case service if it was created, without creating it."""
    return _case_service


def reset_case_service() -> None:
    """Reset the shared case service (useful for testing)."""
    global _case_service
    _case_service = None


@router.post("", response_model=CaseStartResponse, status_code=201)
async def start_case(request: CaseStartRequest, cases: CaseService = Depends(get_case_service)):
    """
    Start a case of a deployed process.

    Unknown process keys or versions are returned as 404.
    """
    instance_id = await cases.start_case(request.process_key, request.version, request.initial_vars)
    record = cases.get_case(instance_id)
    return CaseStartResponse(
        instance_id=instance_id, process_key=record.process_key, version=record.version
    )


@router.get("/find", response_model=CaseResponse)
async def find_latest_case(
    process_key: str = Query(..., alias="processKey"),
    version: int = Query(..., ge=1),
    cases: CaseService = Depends(get_case_service),
):
    """The most recently started case of a process key and version."""
    return CaseResponse.model_validate(cases.find_latest(process_key, version).to_dict())


@router.post("/terminate", response_model=List[TerminateResult])
async def terminate_cases(
    request: BulkTerminateRequest, cases: CaseService = Depends(get_case_service)
):
    """
    Terminate by instance id, by process key and version, or every running case.

    Invalid selector combinations are rejected with 400; a key and version
    without running cases is 404.
    """
    records = cases.terminate_matching(
        instance_id=request.instance_id,
        process_key=request.process_key,
        version=request.version,
        all_running=request.all_running,
        reason=request.reason,
    )
    return [
        TerminateResult(
            instance_id=r.instance_id, status=r.status, reason=r.termination_reason
        )
        for r in records
    ]


@router.get("/{instance_id}", response_model=CaseResponse)
async def get_case(instance_id: str, cases: CaseService = Depends(get_case_service)):
    return CaseResponse.model_validate(cases.get_case(instance_id).to_dict())


@router.get("/{instance_id}/state", response_model=CaseStateResponse)
async def get_case_state(instance_id: str, cases: CaseService = Depends(get_case_service)):
    """Interpreter state: status, current node, pending task and queue sizes."""
    return CaseStateResponse.model_validate(cases.get_state(instance_id))


@router.get("/{instance_id}/user-tasks/{task_id}", response_model=UserTaskInfoResponse)
async def get_user_task(
    instance_id: str, task_id: str, cases: CaseService = Depends(get_case_service)
):
    info = cases.get_user_task_info(instance_id, task_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"User task {task_id} not found")
    return UserTaskInfoResponse.model_validate(info)


@router.post("/{instance_id}/user-tasks/{task_id}/complete", response_model=UserTaskCompleteResponse)
async def complete_user_task(
    instance_id: str,
    task_id: str,
    request: UserTaskCompleteRequest,
    cases: CaseService = Depends(get_case_service),
):
    """
    Complete the pending user task.

    A task id that is not currently pending is ignored (``accepted: false``).
    """
    accepted = cases.complete_user_task(instance_id, task_id, request.payload)
    return UserTaskCompleteResponse(accepted=accepted)


@router.post("/{instance_id}/signals", status_code=202)
async def send_signal(
    instance_id: str, request: EventRequest, cases: CaseService = Depends(get_case_service)
):
    cases.send_signal(instance_id, request.name, request.payload)
    return {"accepted": True}


@router.post("/{instance_id}/messages", status_code=202)
async def send_message(
    instance_id: str, request: EventRequest, cases: CaseService = Depends(get_case_service)
):
    cases.send_message(instance_id, request.name, request.payload)
    return {"accepted": True}


@router.post("/{instance_id}/terminate", response_model=CaseResponse)
async def terminate_case(
    instance_id: str,
    request: Optional[TerminateRequest] = None,
    cases: CaseService = Depends(get_case_service),
):
    cases.terminate(instance_id, request.reason if request else None)
    return CaseResponse.model_validate(cases.get_case(instance_id).to_dict())
