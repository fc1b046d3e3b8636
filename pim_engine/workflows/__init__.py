"""
Workflows Package for the PIM Engine.

This package provides the lifecycle state machine for privileged
assignments and the approval review workflow.
"""

from .approval import ApprovalWorkflow, normalize_approval_request
from .base_workflow import BaseWorkflow, WorkflowStep
from .helpers import (
    classify_validation_error,
    create_result_summary,
    encode_duration,
    format_start_time,
)
from .lifecycle import ACTIVATE, DEACTIVATE, EXTEND, LifecycleWorkflow
from .prompts import ConsoleInputSource, InputSource, ScriptedInputSource

__all__ = [
    "ACTIVATE",
    "DEACTIVATE",
    "EXTEND",
    "ApprovalWorkflow",
    "BaseWorkflow",
    "ConsoleInputSource",
    "InputSource",
    "LifecycleWorkflow",
    "ScriptedInputSource",
    "WorkflowStep",
    "classify_validation_error",
    "create_result_summary",
    "encode_duration",
    "format_start_time",
    "normalize_approval_request",
]
