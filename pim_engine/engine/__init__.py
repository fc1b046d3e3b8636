"""
Engine Package.

This package provides the assignment repository, the lock/timing guard,
the deactivation poller and the preferences store.
"""

from .lock_guard import LockGuard
from .poller import CompletionPoller
from .preferences import PreferencesStore
from .repository import AssignmentRepository, filter_eligible, normalize_instance

__all__ = [
    "AssignmentRepository",
    "CompletionPoller",
    "LockGuard",
    "PreferencesStore",
    "filter_eligible",
    "normalize_instance",
]
