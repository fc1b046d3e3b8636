"""
Lifecycle Workflow for the PIM Engine.

Decides which action is legal for an assignment, builds the schedule
request, drives the validate-then-submit protocol with its retry loop,
and confirms deactivations by polling.

    ELIGIBLE --activate-->   ACTIVE     one selfActivate
    ACTIVE   --deactivate--> ELIGIBLE   one selfDeactivate, then poll
    ACTIVE   --extend-->     ACTIVE     selfDeactivate, poll, selfActivate
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..connectors import BaseDirectoryClient, ConnectorResult
from ..engine.lock_guard import LockGuard
from ..engine.poller import CompletionPoller
from ..engine.repository import AssignmentRepository
from ..errors import (
    AssignmentLockedError,
    DeactivationTimeoutError,
    DirectoryApiError,
    InvalidTransitionError,
    ValidationFailedError,
)
from ..models import (
    ActionResult,
    ActionStatus,
    ActivationRequest,
    Assignment,
    AssignmentState,
    RequestAction,
    ScheduleInfo,
    to_graph_payload,
)
from .base_workflow import BaseWorkflow, WorkflowStep
from .helpers import (
    ASK_BOTH,
    ASK_JUSTIFICATION,
    ASK_TICKET,
    classify_validation_error,
    encode_duration,
    format_start_time,
)
from .prompts import InputSource, ScriptedInputSource

logger = logging.getLogger(__name__)

ACTIVATE = "activate"
DEACTIVATE = "deactivate"
EXTEND = "extend"

DEFAULT_ATTEMPTS_LIMIT = 3


class LifecycleWorkflow(BaseWorkflow):
    """
    State machine for activating, deactivating and extending assignments.

    Only the transitions in TRANSITIONS are legal; anything else raises
    InvalidTransitionError before a request is built.
    """

    TRANSITIONS = {
        (AssignmentState.ELIGIBLE, ACTIVATE): "_activate",
        (AssignmentState.ACTIVE, DEACTIVATE): "_deactivate",
        (AssignmentState.ACTIVE, EXTEND): "_extend",
    }

    def __init__(self, client: BaseDirectoryClient, principal_id: str,
                 config: Optional[Dict[str, Any]] = None,
                 input_source: Optional[InputSource] = None,
                 repository: Optional[AssignmentRepository] = None,
                 lock_guard: Optional[LockGuard] = None,
                 poller: Optional[CompletionPoller] = None):
        super().__init__(client, principal_id, config)

        self.attempts_limit = self.config.get("attempts_limit", DEFAULT_ATTEMPTS_LIMIT)
        self.recheck_before_write = self.config.get("recheck_before_write", True)
        self.input_source = input_source or ScriptedInputSource()
        self.repository = repository or AssignmentRepository(client, principal_id)
        self.lock_guard = lock_guard or LockGuard(self.config.get("lock_minutes", 5))
        self.poller = poller or CompletionPoller(
            client,
            principal_id,
            timeout_seconds=self.config.get("poll_timeout_seconds", 30),
            interval_seconds=self.config.get("poll_interval_seconds", 5),
        )

    def execute(self, assignment: Assignment, action: str, **kwargs) -> ActionResult:
        """
        Run a lifecycle action against an assignment.

        Args:
            assignment: Assignment taken from the repository snapshot
            action: "activate", "deactivate" or "extend"
            **kwargs: duration_hours, justification, ticket_number, start_time

        Returns:
            ActionResult describing the outcome

        Raises:
            InvalidTransitionError: if the action is not legal in the
                assignment's current state
            ConnectionAuthorizationError: if the session is not usable
        """
        handler = self.TRANSITIONS.get((assignment.state, action))
        if handler is None:
            raise InvalidTransitionError(
                f"Cannot {action} {assignment.name}: it is {assignment.state.value.lower()}"
            )
        return getattr(self, handler)(assignment, **kwargs)

    def activate(self, assignment: Assignment, duration_hours: float,
                 justification: Optional[str] = None, ticket_number: Optional[str] = None,
                 start_time: Optional[datetime] = None) -> ActionResult:
        return self.execute(assignment, ACTIVATE, duration_hours=duration_hours,
                            justification=justification, ticket_number=ticket_number,
                            start_time=start_time)

    def deactivate(self, assignment: Assignment, justification: Optional[str] = None) -> ActionResult:
        return self.execute(assignment, DEACTIVATE, justification=justification)

    def extend(self, assignment: Assignment, duration_hours: float,
               justification: Optional[str] = None,
               ticket_number: Optional[str] = None) -> ActionResult:
        return self.execute(assignment, EXTEND, duration_hours=duration_hours,
                            justification=justification, ticket_number=ticket_number)

    def run_batch(self, items: List[Tuple[Assignment, str, Dict[str, Any]]]) -> List[ActionResult]:
        """
        Process selected assignments one after another.

        A failed or illegal item is reported and the rest still run.
        """
        results = []
        for assignment, action, kwargs in items:
            try:
                results.append(self.execute(assignment, action, **kwargs))
            except (InvalidTransitionError, ValueError) as e:
                self._begin()
                results.append(self._finish(action, ActionStatus.FAILED, str(e), assignment.resource_id))
        return results

    # Transitions

    def _activate(self, assignment: Assignment, duration_hours: float,
                  justification: Optional[str] = None, ticket_number: Optional[str] = None,
                  start_time: Optional[datetime] = None) -> ActionResult:
        self._begin()
        schedule = ScheduleInfo(start_time=format_start_time(start_time),
                                duration=encode_duration(duration_hours))

        if self.recheck_before_write:
            try:
                live = self.repository.find(assignment.kind, assignment.resource_id, AssignmentState.ELIGIBLE)
            except DirectoryApiError as e:
                return self._finish_with_error(ACTIVATE, ActionStatus.FAILED, e, assignment.resource_id)
            if live is None:
                return self._finish(ACTIVATE, ActionStatus.FAILED,
                                    f"{assignment.name} is no longer eligible", assignment.resource_id)

        request = self._activation_request(assignment, schedule, justification, ticket_number)
        try:
            self._submit_with_validation(request)
        except ValidationFailedError as e:
            return self._finish_with_error(ACTIVATE, ActionStatus.VALIDATION_FAILED, e, assignment.resource_id)
        except DirectoryApiError as e:
            return self._finish_with_error(ACTIVATE, ActionStatus.FAILED, e, assignment.resource_id)

        return self._finish(ACTIVATE, ActionStatus.SUCCEEDED,
                            f"Activated {assignment.name} for {schedule.duration}", assignment.resource_id)

    def _deactivate(self, assignment: Assignment, justification: Optional[str] = None) -> ActionResult:
        self._begin()
        try:
            self._ensure_unlocked(assignment)
        except AssignmentLockedError as e:
            return self._finish_with_error(DEACTIVATE, ActionStatus.LOCKED, e, assignment.resource_id)
        except (InvalidTransitionError, DirectoryApiError) as e:
            return self._finish_with_error(DEACTIVATE, ActionStatus.FAILED, e, assignment.resource_id)

        try:
            self._submit_deactivation(assignment, justification)
        except DirectoryApiError as e:
            return self._finish_with_error(DEACTIVATE, ActionStatus.FAILED, e, assignment.resource_id)

        try:
            self._wait_for_deactivation(assignment)
        except DeactivationTimeoutError as e:
            return self._finish_with_error(DEACTIVATE, ActionStatus.TIMED_OUT, e, assignment.resource_id)

        return self._finish(DEACTIVATE, ActionStatus.SUCCEEDED,
                            f"Deactivated {assignment.name}", assignment.resource_id)

    def _extend(self, assignment: Assignment, duration_hours: float,
                justification: Optional[str] = None,
                ticket_number: Optional[str] = None) -> ActionResult:
        self._begin()
        duration = encode_duration(duration_hours)
        not_extended = "Extension did not proceed: "

        try:
            self._ensure_unlocked(assignment)
        except AssignmentLockedError as e:
            return self._finish_with_error(EXTEND, ActionStatus.LOCKED, e, assignment.resource_id)
        except (InvalidTransitionError, DirectoryApiError) as e:
            return self._finish_with_error(EXTEND, ActionStatus.FAILED, e, assignment.resource_id,
                                           prefix=not_extended)

        try:
            self._submit_deactivation(assignment, justification)
        except DirectoryApiError as e:
            return self._finish_with_error(
                EXTEND, ActionStatus.FAILED, e, assignment.resource_id,
                prefix=f"{not_extended}{assignment.name} is still active with its original schedule. ",
            )

        try:
            self._wait_for_deactivation(assignment)
        except DeactivationTimeoutError as e:
            return self._finish_with_error(
                EXTEND, ActionStatus.TIMED_OUT, e, assignment.resource_id,
                prefix=f"{not_extended}reactivation was not attempted. ",
            )

        schedule = ScheduleInfo(start_time=format_start_time(), duration=duration)
        request = self._activation_request(assignment, schedule, justification, ticket_number)
        deactivated = f"{assignment.name} was deactivated but could not be reactivated. "
        try:
            self._submit_with_validation(request)
        except ValidationFailedError as e:
            return self._finish_with_error(EXTEND, ActionStatus.VALIDATION_FAILED, e,
                                           assignment.resource_id, prefix=deactivated)
        except DirectoryApiError as e:
            return self._finish_with_error(EXTEND, ActionStatus.FAILED, e,
                                           assignment.resource_id, prefix=deactivated)

        return self._finish(EXTEND, ActionStatus.SUCCEEDED,
                            f"Extended {assignment.name} for {duration}", assignment.resource_id)

    # Building blocks

    def _ensure_unlocked(self, assignment: Assignment):
        """
        Check the lock on the snapshot first (no network call), then on the
        live assignment when re-checking is enabled.

        Raises:
            AssignmentLockedError: inside the holding period
            InvalidTransitionError: if the assignment is no longer active
            DirectoryApiError: if the live assignment cannot be read
        """
        self.lock_guard.check(assignment)
        if not self.recheck_before_write:
            return

        live = self.repository.find(assignment.kind, assignment.resource_id, AssignmentState.ACTIVE)
        if live is None:
            raise InvalidTransitionError(f"{assignment.name} is no longer active")
        self.lock_guard.check(live)

    def _activation_request(self, assignment: Assignment, schedule: ScheduleInfo,
                            justification: Optional[str],
                            ticket_number: Optional[str]) -> ActivationRequest:
        return ActivationRequest(
            action=RequestAction.SELF_ACTIVATE,
            kind=assignment.kind,
            principal_id=self.principal_id,
            resource_id=assignment.resource_id,
            schedule_info=schedule,
            justification=justification,
            ticket_number=ticket_number,
        )

    def _submit(self, request: ActivationRequest, operation: str) -> ConnectorResult:
        payload = to_graph_payload(request)
        step = WorkflowStep(
            system=request.kind.value.lower(),
            operation=operation,
            resource=request.resource_id,
            parameters=payload,
        )
        return self._execute_step(step, lambda: self.client.submit_schedule_request(request.kind, payload))

    def _submit_with_validation(self, request: ActivationRequest) -> ConnectorResult:
        """
        Validate, then submit for real.

        The real write is only sent right after a successful validation.
        Each failed validation asks the input source for new values, up to
        attempts_limit validations in total.

        Raises:
            ValidationFailedError: after attempts_limit failed validations
            DirectoryApiError: on transport failures or a failed real write
        """
        attempt = 0
        while True:
            attempt += 1
            request.validation_only = True
            check = self._submit(request, f"validate_{request.action.value}")

            if check.success:
                request.validation_only = False
                result = self._submit(request, request.action.value)
                if not result.success:
                    raise DirectoryApiError(result.message, result.details, result.status_code)
                return result

            if check.is_transport_failure:
                raise DirectoryApiError(check.message, check.details, check.status_code)

            logger.warning(f"Validation attempt {attempt}/{self.attempts_limit} failed: {check.error}")
            if attempt >= self.attempts_limit:
                raise ValidationFailedError(
                    f"Request validation failed after {attempt} attempts: {check.message}",
                    check.details,
                    attempts=attempt,
                )

            self._apply_feedback(request, check.error or check.message)

    def _apply_feedback(self, request: ActivationRequest, error_text: str):
        """Ask for the values the validation error points at."""
        wanted = classify_validation_error(error_text)

        if wanted in (ASK_JUSTIFICATION, ASK_BOTH):
            answer = self.input_source.ask_justification(error_text)
            if answer is not None:
                request.justification = answer

        if wanted in (ASK_TICKET, ASK_BOTH):
            answer = self.input_source.ask_ticket_number(error_text, required=(wanted == ASK_TICKET))
            if answer is not None:
                request.ticket_number = answer

    def _submit_deactivation(self, assignment: Assignment, justification: Optional[str]):
        request = ActivationRequest(
            action=RequestAction.SELF_DEACTIVATE,
            kind=assignment.kind,
            principal_id=self.principal_id,
            resource_id=assignment.resource_id,
            justification=justification,
        )
        result = self._submit(request, request.action.value)
        if not result.success:
            raise DirectoryApiError(result.message, result.details, result.status_code)

    def _wait_for_deactivation(self, assignment: Assignment):
        step = WorkflowStep(
            system=assignment.kind.value.lower(),
            operation="wait_for_deactivation",
            resource=assignment.resource_id,
        )
        self.steps.append(step)

        if self.poller.wait_for_deactivation(assignment.kind, assignment.resource_id):
            step.mark_success()
            return

        step.mark_failure("timed out")
        raise DeactivationTimeoutError(
            f"Timed out waiting for {assignment.name} to be deactivated; "
            f"the request was accepted and may still complete"
        )
