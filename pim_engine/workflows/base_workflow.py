"""
Base Workflow Classes for the PIM Engine.

This module provides the foundation for the lifecycle and approval
workflows: step bookkeeping, provider calls with error translation, and
conversion of raised errors into ActionResult objects.
"""

import logging
import uuid
from abc import ABC
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..connectors import BaseDirectoryClient, ConnectorResult
from ..errors import ConnectionAuthorizationError, PIMError
from ..models import ActionResult, ActionStatus

logger = logging.getLogger(__name__)


class WorkflowStep:
    """Represents a single provider write issued by a workflow."""

    def __init__(
        self,
        system: str,
        operation: str,
        resource: str = "",
        parameters: Optional[Dict[str, Any]] = None,
    ):
        self.system = system
        self.operation = operation
        self.resource = resource
        self.parameters = parameters or {}
        self.executed_at: Optional[datetime] = None
        self.success: bool = False
        self.error: Optional[str] = None
        self.details: List[str] = []
        self.result: Optional[Any] = None

    def mark_success(self, result: Any = None):
        """Mark step as successful."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = True
        self.result = result

    def mark_failure(self, error: str, details: Optional[List[str]] = None):
        """Mark step as failed."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = False
        self.error = error
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary for serialization."""
        return {
            "system": self.system,
            "operation": self.operation,
            "resource": self.resource,
            "parameters": self.parameters,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "success": self.success,
            "error": self.error,
            "details": self.details,
        }


class BaseWorkflow(ABC):
    """
    Abstract base class for PIM workflows.

    Holds the directory client (the explicit session object) and the
    principal the workflow acts for. Steps are reset at the start of every
    action so each ActionResult lists only its own provider calls.
    """

    def __init__(self, client: BaseDirectoryClient, principal_id: str,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the workflow.

        Args:
            client: Directory client
            principal_id: Object id of the caller
            config: Configuration dictionary
        """
        self.client = client
        self.principal_id = principal_id
        self.config = config or {}
        self.workflow_id = str(uuid.uuid4())
        self.steps: List[WorkflowStep] = []
        self.results: List[ActionResult] = []

        logger.info(f"Initialized {self.__class__.__name__} workflow {self.workflow_id}")

    def _begin(self):
        self.steps = []

    def _execute_step(self, step: WorkflowStep, call: Callable[[], ConnectorResult]) -> ConnectorResult:
        """
        Run one provider call and record it as a step.

        Args:
            step: The step describing the call
            call: Zero-argument callable issuing the request

        Returns:
            ConnectorResult of the call
        """
        self.steps.append(step)
        try:
            result = call()
        except ConnectionAuthorizationError:
            raise
        except Exception as e:
            error_msg = f"Exception during {step.system}.{step.operation}: {e}"
            logger.error(error_msg)
            result = ConnectorResult(False, error_msg, error=str(e), details=[f"Message: {e}"])

        if result.success:
            step.mark_success(result.data)
            logger.info(f"Step completed: {step.system}.{step.operation}({step.resource})")
        else:
            step.mark_failure(result.error or result.message or "Unknown error", result.details)
            logger.warning(f"Step failed: {step.system}.{step.operation}({step.resource}): {result.message}")
        return result

    def _finish(self, action: str, status: ActionStatus, message: str,
                resource_id: Optional[str] = None,
                details: Optional[List[str]] = None) -> ActionResult:
        """Build the ActionResult for the current action and keep it in history."""
        result = ActionResult(
            action=action,
            status=status,
            message=message,
            details=details or [],
            resource_id=resource_id,
            steps=[step.to_dict() for step in self.steps],
            completed_at=datetime.now(timezone.utc),
        )
        self.results.append(result)

        log = logger.info if status == ActionStatus.SUCCEEDED else logger.warning
        log(f"{action} {resource_id}: {status.value} - {message}")
        return result

    def _finish_with_error(self, action: str, status: ActionStatus, error: PIMError,
                           resource_id: Optional[str] = None, prefix: str = "") -> ActionResult:
        return self._finish(action, status, f"{prefix}{error.message}", resource_id, error.details)

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get summary of workflow execution."""
        successful = len([r for r in self.results if r.success])
        return {
            "workflow_id": self.workflow_id,
            "workflow_type": self.__class__.__name__,
            "total_actions": len(self.results),
            "successful_actions": successful,
            "failed_actions": len(self.results) - successful,
            "errors": [r.message for r in self.results if not r.success],
        }
