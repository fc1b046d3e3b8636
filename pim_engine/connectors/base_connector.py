"""
Base Directory Client Classes for the PIM Engine.

This module provides the interface every directory client exposes to the
lifecycle core, together with an in-memory simulated backend used in mock
mode and in tests.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import ConnectionAuthorizationError
from ..models import AssignmentKind, AssignmentState

logger = logging.getLogger(__name__)


class ConnectorResult:
    """Result of a directory client operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None, details: Optional[List[str]] = None,
                 status_code: Optional[int] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error
        self.details = details or []
        self.status_code = status_code

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"

    @property
    def is_transport_failure(self) -> bool:
        """True when the directory gave no usable answer (network error or 5xx)."""
        if self.success:
            return False
        return self.status_code is None or self.status_code >= 500


class BaseDirectoryClient(ABC):
    """
    Abstract base class for identity-governance directory clients.

    The client is the explicit session object threaded through the
    repository, the poller and the workflows.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the client.

        Args:
            config: Configuration dictionary with tenant, credentials, endpoints
            mock_mode: True for the in-memory simulated backend
        """
        self.config = config or {}
        self.mock_mode = mock_mode
        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    @abstractmethod
    def get_current_principal_id(self) -> str:
        """
        Return the object id of the signed-in principal.

        Raises:
            ConnectionAuthorizationError: if there is no valid session or the
                session lacks the required scopes
        """
        pass

    @abstractmethod
    def list_instances(self, kind: AssignmentKind, state: AssignmentState,
                       principal_id: str) -> ConnectorResult:
        """
        List assignment or eligibility schedule instances for a principal.

        Returns:
            ConnectorResult whose data is the list of raw provider records
        """
        pass

    @abstractmethod
    def submit_schedule_request(self, kind: AssignmentKind, payload: Dict[str, Any]) -> ConnectorResult:
        """
        Post a schedule request (activate, deactivate, validation-only).

        Returns:
            ConnectorResult whose data is the created request record
        """
        pass

    @abstractmethod
    def list_schedule_requests(self, kind: AssignmentKind, on: str = "approver") -> ConnectorResult:
        """
        List pending schedule requests filtered by the current user.

        Args:
            kind: Role or group requests
            on: "approver" for requests awaiting my decision,
                "requestor" for requests I raised
        """
        pass

    @abstractmethod
    def list_approval_steps(self, kind: AssignmentKind, approval_id: str) -> ConnectorResult:
        """List the stages of an approval."""
        pass

    @abstractmethod
    def submit_approval_decision(self, kind: AssignmentKind, approval_id: str, stage_id: str,
                                 body: Dict[str, Any]) -> ConnectorResult:
        """Record a review result against a single approval stage."""
        pass

    @abstractmethod
    def cancel_schedule_request(self, kind: AssignmentKind, request_id: str) -> ConnectorResult:
        """Cancel a pending schedule request raised by the current user."""
        pass

    @abstractmethod
    def get_user_name(self, user_id: str) -> ConnectorResult:
        pass

    @abstractmethod
    def get_group_name(self, group_id: str) -> ConnectorResult:
        pass

    @abstractmethod
    def get_role_name(self, role_id: str) -> ConnectorResult:
        pass

    def is_mock_mode(self) -> bool:
        """Check if this client is running against the simulated backend."""
        return self.mock_mode


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _duration_to_timedelta(duration: str) -> timedelta:
    match = re.fullmatch(r"PT(\d+)([HM])", duration or "")
    if not match:
        return timedelta(hours=1)
    amount = int(match.group(1))
    return timedelta(hours=amount) if match.group(2) == "H" else timedelta(minutes=amount)


class MockDirectoryClient(BaseDirectoryClient):
    """
    In-memory simulated directory.

    Activations create active instances and deactivations remove them, so
    the lifecycle can be exercised end to end without a tenant. Failures are
    scripted through the public attributes.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, principal_id: str = "mock-principal"):
        super().__init__(config, mock_mode=True)

        self.principal_id = principal_id
        self.authorized = True
        self.instances: Dict[Tuple[AssignmentKind, AssignmentState], List[Dict[str, Any]]] = {
            (kind, state): [] for kind in AssignmentKind for state in AssignmentState
        }
        self.schedule_requests: Dict[Tuple[AssignmentKind, str], List[Dict[str, Any]]] = {
            (kind, on): [] for kind in AssignmentKind for on in ("approver", "requestor")
        }
        self.approval_steps: Dict[str, List[Dict[str, Any]]] = {}
        self.users: Dict[str, str] = {}
        self.groups: Dict[str, str] = {}
        self.roles: Dict[str, str] = {}

        # Every payload posted, in order
        self.submitted: List[Dict[str, Any]] = []
        self.decisions: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []

        # Scripted failures
        self.validation_errors: List[str] = []
        self.failing_actions: Dict[str, str] = {}
        self.failing_collections: Set[Tuple[AssignmentKind, AssignmentState]] = set()
        self.deactivation_lag = 0
        self._lagging: Dict[Tuple[AssignmentKind, str], int] = {}

    # Seeding helpers

    def add_assignment(self, kind: AssignmentKind, state: AssignmentState, resource_id: str,
                       name: str = "", start: Optional[datetime] = None,
                       end: Optional[datetime] = None,
                       created: Optional[datetime] = None) -> Dict[str, Any]:
        """Seed an eligible or active instance and return the raw record."""
        record: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "principalId": self.principal_id,
            "memberType": "Direct",
            "startDateTime": _iso(start) if start else None,
            "endDateTime": _iso(end) if end else None,
        }
        if created:
            record["createdDateTime"] = _iso(created)

        schedule_key = "Assignment" if state == AssignmentState.ACTIVE else "Eligibility"
        if kind == AssignmentKind.ROLE:
            record["roleDefinitionId"] = resource_id
            record["directoryScopeId"] = "/"
            record["roleDefinition"] = {"id": resource_id, "displayName": name or None}
            record[f"role{schedule_key}ScheduleId"] = str(uuid.uuid4())
            if name:
                self.roles[resource_id] = name
        else:
            record["groupId"] = resource_id
            record["accessId"] = "member"
            record["group"] = {"id": resource_id, "displayName": name or None}
            record[f"{schedule_key[0].lower()}{schedule_key[1:]}ScheduleId"] = str(uuid.uuid4())
            if name:
                self.groups[resource_id] = name
        if state == AssignmentState.ACTIVE:
            record["assignmentType"] = "Activated"

        self.instances[(kind, state)].append(record)
        return record

    def add_schedule_request(self, kind: AssignmentKind, on: str, resource_id: str,
                             requestor_id: str, justification: str = "",
                             steps: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Seed a pending request (and its approval stages for the approver view)."""
        request_id = str(uuid.uuid4())
        approval_id = str(uuid.uuid4())
        record: Dict[str, Any] = {
            "id": request_id,
            "status": "PendingApproval",
            "action": "selfActivate",
            "principalId": requestor_id,
            "justification": justification,
            "createdDateTime": _iso(datetime.now(timezone.utc)),
            "approvalId": approval_id,
            "scheduleInfo": {
                "startDateTime": _iso(datetime.now(timezone.utc)),
                "expiration": {"type": "afterDuration", "duration": "PT8H"},
            },
        }
        if kind == AssignmentKind.ROLE:
            record["roleDefinitionId"] = resource_id
        else:
            record["groupId"] = resource_id

        self.schedule_requests[(kind, on)].append(record)
        self.approval_steps[approval_id] = steps if steps is not None else [
            {"id": str(uuid.uuid4()), "status": "InProgress", "assignedToMe": True,
             "reviewResult": "NotReviewed"}
        ]
        return record

    # Directory client interface

    def get_current_principal_id(self) -> str:
        if not self.authorized:
            raise ConnectionAuthorizationError("Not signed in to the directory")
        return self.principal_id

    def list_instances(self, kind: AssignmentKind, state: AssignmentState,
                       principal_id: str) -> ConnectorResult:
        if (kind, state) in self.failing_collections:
            return ConnectorResult(False, f"Failed to list {state.value.lower()} {kind.value.lower()}s",
                                   error="Service unavailable",
                                   details=["Code: ServiceUnavailable", "Message: Service unavailable"],
                                   status_code=503)

        records = [r for r in self.instances[(kind, state)] if r.get("principalId") == principal_id]

        if state == AssignmentState.ACTIVE and self._lagging:
            for lag_kind, resource_id in list(self._lagging):
                if lag_kind != kind:
                    continue
                self._lagging[(kind, resource_id)] -= 1
                if self._lagging[(kind, resource_id)] < 0:
                    del self._lagging[(kind, resource_id)]
                    self._remove_active(kind, resource_id)
            records = [r for r in self.instances[(kind, state)] if r.get("principalId") == principal_id]

        return ConnectorResult(True, f"Found {len(records)} records", data=list(records))

    def submit_schedule_request(self, kind: AssignmentKind, payload: Dict[str, Any]) -> ConnectorResult:
        self.submitted.append(dict(payload))
        action = payload.get("action")
        resource_id = payload.get("roleDefinitionId") or payload.get("groupId")

        if payload.get("isValidationOnly"):
            if self.validation_errors:
                error = self.validation_errors.pop(0)
                return ConnectorResult(False, "Request validation failed", error=error,
                                       details=["Code: InvalidPolicy", f"Message: {error}"],
                                       status_code=400)
            return ConnectorResult(True, "Validation passed", data={"status": "Validated"})

        if action in self.failing_actions:
            error = self.failing_actions[action]
            return ConnectorResult(False, f"Request {action} failed", error=error,
                                   details=[f"Message: {error}"], status_code=400)

        if action == "selfActivate":
            duration = payload["scheduleInfo"]["expiration"]["duration"]
            start = datetime.now(timezone.utc)
            state = AssignmentState.ACTIVE
            self.add_assignment(kind, state, resource_id,
                                name=self._name_for(kind, resource_id),
                                start=start, end=start + _duration_to_timedelta(duration),
                                created=start)
            logger.info(f"Mock activated {kind.value.lower()} {resource_id}")
        elif action == "selfDeactivate":
            if self.deactivation_lag:
                self._lagging[(kind, resource_id)] = self.deactivation_lag
            else:
                self._remove_active(kind, resource_id)
            logger.info(f"Mock deactivated {kind.value.lower()} {resource_id}")

        return ConnectorResult(True, f"Submitted {action}",
                               data={"id": str(uuid.uuid4()), "status": "Provisioned", "action": action})

    def list_schedule_requests(self, kind: AssignmentKind, on: str = "approver") -> ConnectorResult:
        records = self.schedule_requests.get((kind, on), [])
        return ConnectorResult(True, f"Found {len(records)} requests", data=list(records))

    def list_approval_steps(self, kind: AssignmentKind, approval_id: str) -> ConnectorResult:
        if approval_id not in self.approval_steps:
            return ConnectorResult(False, f"Approval {approval_id} not found",
                                   error="ResourceNotFound", status_code=404)
        return ConnectorResult(True, "Found approval steps", data=list(self.approval_steps[approval_id]))

    def submit_approval_decision(self, kind: AssignmentKind, approval_id: str, stage_id: str,
                                 body: Dict[str, Any]) -> ConnectorResult:
        steps = self.approval_steps.get(approval_id, [])
        for step in steps:
            if step["id"] == stage_id:
                step["reviewResult"] = body.get("reviewResult")
                step["status"] = "Completed"
                self.decisions.append({"approval_id": approval_id, "stage_id": stage_id, **body})
                return ConnectorResult(True, f"Recorded {body.get('reviewResult')}")
        return ConnectorResult(False, f"Stage {stage_id} not found", error="ResourceNotFound",
                               status_code=404)

    def cancel_schedule_request(self, kind: AssignmentKind, request_id: str) -> ConnectorResult:
        records = self.schedule_requests[(kind, "requestor")]
        for record in records:
            if record["id"] == request_id:
                records.remove(record)
                self.cancelled.append(request_id)
                return ConnectorResult(True, f"Cancelled request {request_id}")
        return ConnectorResult(False, f"Request {request_id} not found", error="ResourceNotFound",
                               status_code=404)

    def get_user_name(self, user_id: str) -> ConnectorResult:
        return self._lookup(self.users, user_id, "User")

    def get_group_name(self, group_id: str) -> ConnectorResult:
        return self._lookup(self.groups, group_id, "Group")

    def get_role_name(self, role_id: str) -> ConnectorResult:
        return self._lookup(self.roles, role_id, "Role")

    def _lookup(self, table: Dict[str, str], key: str, label: str) -> ConnectorResult:
        if key in table:
            return ConnectorResult(True, f"Found {label.lower()} {key}", data=table[key])
        return ConnectorResult(False, f"{label} {key} not found", error="ResourceNotFound",
                               status_code=404)

    def _name_for(self, kind: AssignmentKind, resource_id: str) -> str:
        table = self.roles if kind == AssignmentKind.ROLE else self.groups
        return table.get(resource_id, "")

    def _remove_active(self, kind: AssignmentKind, resource_id: str):
        key = "roleDefinitionId" if kind == AssignmentKind.ROLE else "groupId"
        active = self.instances[(kind, AssignmentState.ACTIVE)]
        self.instances[(kind, AssignmentState.ACTIVE)] = [
            r for r in active if r.get(key) != resource_id
        ]
