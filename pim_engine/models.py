"""
Core data models for the PIM Engine.

This module defines the Pydantic models used throughout the system
for privileged assignments, activation requests, approval requests,
action results and user preferences.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class AssignmentKind(str, Enum):
    """Kind of privileged access."""
    ROLE = "ROLE"
    GROUP = "GROUP"


class AssignmentState(str, Enum):
    """Whether the principal holds the access or may activate it."""
    ELIGIBLE = "ELIGIBLE"
    ACTIVE = "ACTIVE"


class RequestAction(str, Enum):
    """Self-service actions understood by the schedule request endpoints."""
    SELF_ACTIVATE = "selfActivate"
    SELF_DEACTIVATE = "selfDeactivate"
    EXTEND = "selfExtend"


class ReviewResult(str, Enum):
    """Outcome of an approval decision."""
    APPROVE = "Approve"
    DENY = "Deny"


class ActionStatus(str, Enum):
    """Final status of a lifecycle or approval action."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    LOCKED = "LOCKED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TIMED_OUT = "TIMED_OUT"


class Assignment(BaseModel):
    """Normalized role or group assignment (eligible or active)."""
    kind: AssignmentKind
    state: AssignmentState
    name: str = Field(..., description="Display name, or the raw id when resolution failed")
    resource_id: str = Field(..., description="Role definition id or group id")
    start_time: Optional[datetime] = Field(None, description="Start of the schedule")
    end_time: Optional[datetime] = Field(None, description="End of the schedule, None means permanent")
    created_time: Optional[datetime] = Field(None, description="Creation time, preferred for lock math")
    instance_id: Optional[str] = Field(None, description="Provider instance id")
    schedule_id: Optional[str] = Field(None, description="Provider schedule id")
    member_type: Optional[str] = Field(None, description="Direct/Group/Inherited")
    access_id: Optional[str] = Field(None, description="member/owner for group assignments")
    locked: bool = False
    index: Optional[int] = Field(None, description="Ordinal used by selection menus")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original provider record")

    @field_validator('resource_id')
    @classmethod
    def validate_resource_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('resource_id must not be empty')
        return v

    @property
    def is_permanent(self) -> bool:
        return self.end_time is None

    @property
    def identity(self) -> tuple:
        """Key used to match eligible and active counterparts."""
        return (self.kind, self.resource_id)


class ScheduleInfo(BaseModel):
    """Start time and ISO-8601 duration of a requested activation."""
    start_time: str = Field(..., description="Extended ISO-8601 UTC timestamp")
    duration: str = Field(..., description="ISO-8601 duration such as PT8H or PT90M")


class ActivationRequest(BaseModel):
    """Payload for a self-service schedule request."""
    action: RequestAction
    kind: AssignmentKind
    principal_id: str
    resource_id: str
    schedule_info: Optional[ScheduleInfo] = None
    justification: Optional[str] = None
    ticket_number: Optional[str] = None
    validation_only: bool = False

    @model_validator(mode='after')
    def check_schedule_info(self) -> 'ActivationRequest':
        needs_schedule = self.action in (RequestAction.SELF_ACTIVATE, RequestAction.EXTEND)
        if needs_schedule and self.schedule_info is None:
            raise ValueError(f'schedule_info is required for {self.action.value}')
        if not needs_schedule and self.schedule_info is not None:
            raise ValueError(f'schedule_info is not allowed for {self.action.value}')
        return self


class ApprovalRequest(BaseModel):
    """Snapshot of a pending request awaiting an approval decision."""
    id: str
    kind: AssignmentKind
    requestor_id: Optional[str] = None
    requestor_name: str = ""
    resource_id: str
    resource_name: str = ""
    status: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    justification: Optional[str] = None
    ticket_number: Optional[str] = None
    created_time: Optional[datetime] = None
    action: Optional[str] = None
    approval_id: Optional[str] = Field(None, description="Approval resource the stages hang off")
    approval_stage: Optional[str] = Field(None, description="Resolved in-progress stage id")


class ActionResult(BaseModel):
    """Result of a single lifecycle or approval action."""
    action: str
    status: ActionStatus
    message: str = ""
    details: List[str] = Field(default_factory=list)
    resource_id: Optional[str] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == ActionStatus.SUCCEEDED


class Preferences(BaseModel):
    """Defaults used by the non-interactive entry point."""
    default_justification: Optional[str] = None
    default_ticket_number: Optional[str] = None
    default_duration: Optional[float] = Field(None, description="Activation duration in hours")


def to_graph_payload(request: ActivationRequest) -> Dict[str, Any]:
    """
    Serialize an activation request into the Microsoft Graph JSON contract.

    Args:
        request: The request to serialize

    Returns:
        Dictionary ready to be posted to a schedule request endpoint
    """
    payload: Dict[str, Any] = {
        "action": request.action.value,
        "principalId": request.principal_id,
    }

    if request.kind == AssignmentKind.ROLE:
        payload["roleDefinitionId"] = request.resource_id
        payload["directoryScopeId"] = "/"
    else:
        payload["groupId"] = request.resource_id
        payload["accessId"] = "member"

    if request.schedule_info is not None:
        payload["scheduleInfo"] = {
            "startDateTime": request.schedule_info.start_time,
            "expiration": {
                "type": "afterDuration",
                "duration": request.schedule_info.duration,
            },
        }

    if request.justification:
        payload["justification"] = request.justification

    if request.ticket_number:
        payload["ticketInfo"] = {"ticketNumber": request.ticket_number}

    payload["isValidationOnly"] = request.validation_only
    return payload


# Type aliases for convenience
Assignments = List[Assignment]
ApprovalRequests = List[ApprovalRequest]
