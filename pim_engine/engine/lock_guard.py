"""
Lock/Timing Guard for the PIM Engine.

An active assignment may not be extended or deactivated until the
directory has had time to settle after the write that created it.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..errors import AssignmentLockedError
from ..models import Assignment, AssignmentState

logger = logging.getLogger(__name__)

DEFAULT_LOCK_MINUTES = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LockGuard:
    """Enforces the minimum holding period of active assignments."""

    def __init__(self, lock_minutes: float = DEFAULT_LOCK_MINUTES,
                 clock: Optional[Callable[[], datetime]] = None):
        self.lock_window = timedelta(minutes=lock_minutes)
        self.clock = clock or utc_now

    def reference_time(self, assignment: Assignment) -> Optional[datetime]:
        """Creation time when known, otherwise start time."""
        return assignment.created_time or assignment.start_time

    def unlocks_at(self, assignment: Assignment) -> Optional[datetime]:
        reference = self.reference_time(assignment)
        if assignment.state != AssignmentState.ACTIVE or reference is None:
            return None
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        return reference + self.lock_window

    def is_locked(self, assignment: Assignment) -> bool:
        unlocks_at = self.unlocks_at(assignment)
        return unlocks_at is not None and self.clock() < unlocks_at

    def minutes_remaining(self, assignment: Assignment) -> int:
        """Whole minutes until the assignment unlocks, rounded up (0 when unlocked)."""
        if not self.is_locked(assignment):
            return 0
        remaining = self.unlocks_at(assignment) - self.clock()
        return math.ceil(remaining.total_seconds() / 60)

    def status_line(self, assignment: Assignment) -> str:
        if not self.is_locked(assignment):
            return "ready"
        minutes = self.minutes_remaining(assignment)
        return f"ready in {minutes} minute{'s' if minutes != 1 else ''}"

    def check(self, assignment: Assignment):
        """
        Raise if the assignment is locked.

        Raises:
            AssignmentLockedError: while inside the holding period
        """
        if self.is_locked(assignment):
            minutes = self.minutes_remaining(assignment)
            raise AssignmentLockedError(
                f"{assignment.name} was modified recently and can be changed again "
                f"in {minutes} minute{'s' if minutes != 1 else ''}",
                minutes_remaining=minutes,
            )

    def annotate(self, assignments: List[Assignment]) -> List[Assignment]:
        """Attach the computed locked flag to each assignment."""
        for assignment in assignments:
            assignment.locked = self.is_locked(assignment)
        return assignments

    def actionable(self, assignments: List[Assignment]) -> List[Assignment]:
        """
        Build the selectable set: locked assignments are left out and the
        rest are numbered 1..n.
        """
        selectable = [a for a in self.annotate(assignments) if not a.locked]
        for position, assignment in enumerate(selectable, start=1):
            assignment.index = position
        logger.debug(f"{len(selectable)} of {len(assignments)} assignments are actionable")
        return selectable
