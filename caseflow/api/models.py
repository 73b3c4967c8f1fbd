# Pydantic models for caseflow API
# Request and response schemas for REST API

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any, List
from enum import Enum


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class CaseStatus(str, Enum):
    """Case lifecycle status"""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TERMINATED = "TERMINATED"


# ==================== Definition Models ====================

class DefinitionDeployRequest(ApiModel):
    """Request model for deploying a process definition"""
    process_key: str = Field(..., min_length=1, description="Key the definition is deployed under")
    xml: str = Field(..., min_length=1, description="BPMN 2.0 XML content")


class DefinitionSummary(ApiModel):
    """Compiled definition overview"""
    process_key: str
    version: int
    compiled_process_key: str
    node_count: int
    transition_count: int
    event_subprocess_count: int
    nodes_by_type: Dict[str, int]


class DeploymentResponse(ApiModel):
    """Response model for a deployment"""
    process_key: str
    version: int
    compiled_process_key: str
    summary: DefinitionSummary
    warnings: List[str] = []


class DefinitionRecordResponse(ApiModel):
    process_key: str
    version: int
    active: bool
    deployed_at: str
    compiled_process_key: str


class DefinitionListResponse(ApiModel):
    """Response for list of definitions"""
    definitions: List[DefinitionRecordResponse]
    total: int


# ==================== Case Models ====================

class CaseStartRequest(ApiModel):
    """Request model for starting a case"""
    process_key: str = Field(..., min_length=1, description="Deployed process key")
    version: Optional[int] = Field(None, ge=1, description="Version, latest active when omitted")
    initial_vars: Dict[str, Any] = Field(default_factory=dict, description="Seed variables")


class CaseStartResponse(ApiModel):
    instance_id: str
    process_key: str
    version: int


class CaseResponse(ApiModel):
    """Lifecycle view of a case"""
    instance_id: str
    process_key: str
    version: int
    status: CaseStatus
    started_at: str
    ended_at: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    termination_reason: Optional[str] = None
    parent_instance_id: Optional[str] = None
    variables: Dict[str, Any] = {}


class CaseStateResponse(ApiModel):
    """Interpreter state of a case"""
    status: str
    current_node_id: Optional[str] = None
    pending_user_task_id: Optional[str] = None
    pending_signal_count: int = 0
    pending_message_count: int = 0
    active_child_ids: List[str] = []


class FormFieldResponse(ApiModel):
    id: str
    label: Optional[str] = None
    type: Optional[str] = None
    default_value: Optional[str] = None
    required: bool = False
    read_only: bool = False
    properties: Dict[str, str] = {}


class UserTaskInfoResponse(ApiModel):
    task_id: str
    name: str
    form_key: Optional[str] = None
    assignee_role: Optional[str] = None
    form_fields: List[FormFieldResponse] = []


class UserTaskCompleteRequest(ApiModel):
    payload: Dict[str, Any] = Field(default_factory=dict, description="Variables merged on completion")


class UserTaskCompleteResponse(ApiModel):
    accepted: bool


class EventRequest(ApiModel):
    """Signal or message delivered to a case"""
    name: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)


class TerminateRequest(ApiModel):
    reason: Optional[str] = None


class BulkTerminateRequest(ApiModel):
    """Select cases to terminate: one id, a key and version, or every running case"""
    instance_id: Optional[str] = None
    process_key: Optional[str] = None
    version: Optional[int] = Field(None, ge=1)
    all_running: bool = False
    reason: Optional[str] = None


class TerminateResult(ApiModel):
    instance_id: str
    status: CaseStatus
    reason: Optional[str] = None


# ==================== System Models ====================

class HealthResponse(ApiModel):
    """Health check response"""
    status: str
    version: str
    definition_count: int
    running_cases: int


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str
    code: str
    timestamp: str
