"""
Approval Workflow for the PIM Engine.

Lists pending role and group requests awaiting the caller's decision,
resolves the approval stage assigned to the caller, and records approve or
deny decisions. Also lists and cancels the caller's own pending requests.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..connectors import BaseDirectoryClient, NameResolver
from ..errors import DirectoryApiError
from ..models import ActionResult, ActionStatus, ApprovalRequest, AssignmentKind, ReviewResult
from .base_workflow import BaseWorkflow, WorkflowStep
from .prompts import InputSource, ScriptedInputSource

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "(unknown)"

# (pending request, outcome or None to skip, justification)
Decision = Tuple[ApprovalRequest, Optional[ReviewResult], Optional[str]]


def normalize_approval_request(raw: Dict[str, Any], kind: AssignmentKind,
                               resolver: Optional[NameResolver] = None) -> ApprovalRequest:
    """
    Build an ApprovalRequest from a raw schedule request record.

    Requestor and resource names are best-effort: a failed lookup gives a
    placeholder for the requestor and the raw id for the resource.
    """
    resource_id = raw.get("roleDefinitionId") if kind == AssignmentKind.ROLE else raw.get("groupId")
    requestor_id = raw.get("principalId")
    schedule = raw.get("scheduleInfo") or {}
    expiration = schedule.get("expiration") or {}

    requestor_name = UNKNOWN_NAME
    resource_name = resource_id or UNKNOWN_NAME
    if resolver is not None:
        requestor_name = resolver.resolve_user_name(requestor_id, fallback=UNKNOWN_NAME)
        if resource_id:
            if kind == AssignmentKind.ROLE:
                resource_name = resolver.resolve_role_name(resource_id)
            else:
                resource_name = resolver.resolve_group_name(resource_id)

    return ApprovalRequest(
        id=raw["id"],
        kind=kind,
        requestor_id=requestor_id,
        requestor_name=requestor_name,
        resource_id=resource_id or "",
        resource_name=resource_name,
        status=raw.get("status"),
        start_time=schedule.get("startDateTime"),
        end_time=expiration.get("endDateTime"),
        justification=raw.get("justification"),
        ticket_number=(raw.get("ticketInfo") or {}).get("ticketNumber"),
        created_time=raw.get("createdDateTime"),
        action=raw.get("action"),
        approval_id=raw.get("approvalId"),
    )


class ApprovalWorkflow(BaseWorkflow):
    """
    Reviews pending approval requests.

    Each decision is independent: a failure on one request is reported and
    the remaining requests in the same batch are still processed.
    """

    def __init__(self, client: BaseDirectoryClient, principal_id: str,
                 config: Optional[Dict[str, Any]] = None,
                 input_source: Optional[InputSource] = None,
                 resolver: Optional[NameResolver] = None):
        super().__init__(client, principal_id, config)
        self.input_source = input_source or ScriptedInputSource()
        self.resolver = resolver or NameResolver(client)

    def list_pending_approvals(self, kind: AssignmentKind) -> List[ApprovalRequest]:
        """Requests awaiting the caller's decision; empty on any failure."""
        return self._list_requests(kind, "approver")

    def list_my_requests(self, kind: AssignmentKind) -> List[ApprovalRequest]:
        """The caller's own requests that are still pending approval."""
        return self._list_requests(kind, "requestor")

    def _list_requests(self, kind: AssignmentKind, on: str) -> List[ApprovalRequest]:
        label = f"pending {kind.value.lower()} requests ({on})"
        try:
            result = self.client.list_schedule_requests(kind, on=on)
        except Exception as e:
            logger.warning(f"Failed to fetch {label}: {e}")
            return []

        if not result.success:
            logger.warning(f"Failed to fetch {label}: {result.message}")
            return []

        requests = []
        for raw in result.data or []:
            try:
                requests.append(normalize_approval_request(raw, kind, self.resolver))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed request record: {e}")
        logger.info(f"Found {len(requests)} {label}")
        return requests

    def resolve_stage_id(self, kind: AssignmentKind, approval_id: str) -> str:
        """
        Find the in-progress approval stage assigned to the caller.

        Raises:
            DirectoryApiError: if the stages cannot be read or none is waiting
                on the caller
        """
        result = self.client.list_approval_steps(kind, approval_id)
        if not result.success:
            raise DirectoryApiError(f"Could not read approval {approval_id}: {result.message}",
                                    result.details, result.status_code)

        for stage in result.data or []:
            if stage.get("status") == "InProgress" and stage.get("assignedToMe", True):
                return stage["id"]

        raise DirectoryApiError(f"No stage of approval {approval_id} is waiting on you")

    def decide(self, kind: AssignmentKind, approval_id: str, stage_id: Optional[str],
               outcome: ReviewResult, justification: Optional[str] = None) -> ActionResult:
        """
        Record an approve/deny decision on one approval stage.

        Args:
            kind: Role or group approval
            approval_id: Approval resource id
            stage_id: Stage to decide on; resolved when None
            outcome: Approve or Deny
            justification: Reason for the decision, asked for when missing

        Returns:
            ActionResult for the decision
        """
        self._begin()
        action = outcome.value.lower()

        if not justification:
            justification = self.input_source.ask_justification(
                f"A justification is required to {action} this request"
            )
        if not justification:
            return self._finish(action, ActionStatus.FAILED,
                                "A justification is required for approval decisions", approval_id)

        if stage_id is None:
            try:
                stage_id = self.resolve_stage_id(kind, approval_id)
            except DirectoryApiError as e:
                return self._finish_with_error(action, ActionStatus.FAILED, e, approval_id)

        body = {"justification": justification, "reviewResult": outcome.value}
        step = WorkflowStep(system=kind.value.lower(), operation=f"review_{action}",
                            resource=approval_id, parameters={"stage_id": stage_id, **body})
        result = self._execute_step(
            step, lambda: self.client.submit_approval_decision(kind, approval_id, stage_id, body)
        )

        if not result.success:
            return self._finish(action, ActionStatus.FAILED, result.message, approval_id, result.details)
        return self._finish(action, ActionStatus.SUCCEEDED,
                            f"Recorded {outcome.value} on approval {approval_id}", approval_id)

    def review(self, kind: AssignmentKind, decisions: List[Decision]) -> List[ActionResult]:
        """
        Apply a batch of decisions in order.

        Items with no outcome are skipped; every other item is decided on its
        own so one failure does not block the rest.
        """
        results = []
        for request, outcome, justification in decisions:
            if outcome is None:
                logger.info(f"Skipped request {request.id}")
                continue
            if not request.approval_id:
                self._begin()
                results.append(self._finish(outcome.value.lower(), ActionStatus.FAILED,
                                            f"Request {request.id} has no approval attached", request.id))
                continue
            results.append(self.decide(kind, request.approval_id, request.approval_stage,
                                       outcome, justification))
        return results

    def cancel_request(self, kind: AssignmentKind, request_id: str) -> ActionResult:
        """Cancel one of the caller's pending requests."""
        self._begin()
        step = WorkflowStep(system=kind.value.lower(), operation="cancel", resource=request_id)
        result = self._execute_step(step, lambda: self.client.cancel_schedule_request(kind, request_id))
        if not result.success:
            return self._finish("cancel", ActionStatus.FAILED, result.message, request_id, result.details)
        return self._finish("cancel", ActionStatus.SUCCEEDED, f"Cancelled request {request_id}", request_id)
