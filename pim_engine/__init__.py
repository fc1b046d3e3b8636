"""
Privileged Identity Management Engine (PIM Engine)

Lifecycle automation for time-bound privileged access in Microsoft
Entra ID: discover eligible and active role and group assignments,
activate, extend or deactivate them, and review pending approvals.
"""

__version__ = "1.0.0"
__author__ = "PIM Engine Team"
__email__ = "team@example.com"

from .engine.lock_guard import LockGuard
from .engine.poller import CompletionPoller
from .engine.repository import AssignmentRepository
from .workflows.approval import ApprovalWorkflow
from .workflows.lifecycle import LifecycleWorkflow

__all__ = [
    "ApprovalWorkflow",
    "AssignmentRepository",
    "CompletionPoller",
    "LifecycleWorkflow",
    "LockGuard",
]
