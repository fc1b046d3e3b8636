"""
Tests for the Lock/Timing Guard.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pim_engine.engine.lock_guard import LockGuard
from pim_engine.errors import AssignmentLockedError
from pim_engine.models import Assignment, AssignmentKind, AssignmentState

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def active(name="Reader", created=None, start=None):
    return Assignment(kind=AssignmentKind.ROLE, state=AssignmentState.ACTIVE, name=name,
                      resource_id=f"role-{name}", created_time=created, start_time=start,
                      end_time=NOW + timedelta(hours=4))


class TestLockGuard:
    """Test cases for lock computation."""

    @pytest.fixture
    def guard(self):
        return LockGuard(lock_minutes=5, clock=lambda: NOW)

    def test_recent_activation_is_locked(self, guard):
        """Test that an assignment activated moments ago is locked."""
        assignment = active(created=NOW - timedelta(minutes=2))

        assert guard.is_locked(assignment)
        assert guard.minutes_remaining(assignment) == 3
        assert guard.status_line(assignment) == "ready in 3 minutes"

    def test_minutes_round_up(self, guard):
        """Test that remaining minutes round up."""
        assignment = active(created=NOW - timedelta(minutes=4, seconds=30))
        assert guard.minutes_remaining(assignment) == 1
        assert guard.status_line(assignment) == "ready in 1 minute"

    def test_old_activation_is_ready(self, guard):
        """Test that an assignment past the window is unlocked."""
        assignment = active(created=NOW - timedelta(minutes=5))

        assert not guard.is_locked(assignment)
        assert guard.minutes_remaining(assignment) == 0
        assert guard.status_line(assignment) == "ready"

    def test_created_time_wins_over_start(self, guard):
        """Test that the created time is preferred over the start time."""
        assignment = active(created=NOW - timedelta(minutes=1), start=NOW - timedelta(hours=1))
        assert guard.is_locked(assignment)

    def test_start_time_used_without_created(self, guard):
        """Test that the start time is used when created time is missing."""
        assert guard.is_locked(active(start=NOW - timedelta(minutes=1)))
        assert not guard.is_locked(active(start=NOW - timedelta(minutes=10)))

    def test_no_reference_time_is_unlocked(self, guard):
        """Test that an assignment with no timestamps is unlocked."""
        assert not guard.is_locked(active())

    def test_naive_times_are_utc(self, guard):
        """Test that naive timestamps are read as UTC."""
        naive = (NOW - timedelta(minutes=1)).replace(tzinfo=None)
        assert guard.is_locked(active(created=naive))

    def test_eligible_is_never_locked(self, guard):
        """Test that eligible assignments are never locked."""
        eligible = Assignment(kind=AssignmentKind.GROUP, state=AssignmentState.ELIGIBLE, name="Ops",
                              resource_id="g1", start_time=NOW)
        assert not guard.is_locked(eligible)

    def test_check_raises_with_countdown(self, guard):
        """Test that check raises with the minutes remaining."""
        with pytest.raises(AssignmentLockedError) as exc_info:
            guard.check(active(created=NOW - timedelta(seconds=30)))
        assert exc_info.value.minutes_remaining == 5

    def test_actionable_numbers_unlocked_only(self, guard):
        """Test that only unlocked assignments get selection numbers."""
        fresh = active("Fresh", created=NOW - timedelta(minutes=1))
        old_a = active("OldA", created=NOW - timedelta(hours=1))
        old_b = active("OldB", created=NOW - timedelta(hours=2))

        selectable = guard.actionable([fresh, old_a, old_b])

        assert [(a.name, a.index) for a in selectable] == [("OldA", 1), ("OldB", 2)]
        assert fresh.locked is True
        assert fresh.index is None

    def test_custom_window(self):
        """Test a lock window other than five minutes."""
        guard = LockGuard(lock_minutes=10, clock=lambda: NOW)
        assert guard.minutes_remaining(active(created=NOW - timedelta(minutes=5))) == 5
