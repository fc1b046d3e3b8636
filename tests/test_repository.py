"""
Tests for the Assignment Repository.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from pim_engine.connectors import ConnectorResult, NameResolver
from pim_engine.engine.repository import AssignmentRepository, filter_eligible, normalize_instance
from pim_engine.errors import ConnectionAuthorizationError, DirectoryApiError
from pim_engine.models import Assignment, AssignmentKind, AssignmentState

ROLE = AssignmentKind.ROLE
GROUP = AssignmentKind.GROUP
ACTIVE = AssignmentState.ACTIVE
ELIGIBLE = AssignmentState.ELIGIBLE


class TestAssignmentRepository:
    """Test cases for listing assignments."""

    @pytest.fixture
    def seeded(self, client, utc_now):
        client.add_assignment(ROLE, ELIGIBLE, "role-admin", "Global Administrator")
        client.add_assignment(ROLE, ELIGIBLE, "role-reader", "Global Reader")
        client.add_assignment(ROLE, ACTIVE, "role-reader", "Global Reader",
                              start=utc_now - timedelta(hours=1), end=utc_now + timedelta(hours=7))
        client.add_assignment(GROUP, ELIGIBLE, "group-ops", "Ops")
        client.add_assignment(GROUP, ACTIVE, "group-dev", "Developers",
                              start=utc_now - timedelta(hours=1), end=utc_now + timedelta(hours=1))
        return client

    @pytest.fixture
    def repository(self, seeded):
        return AssignmentRepository(seeded, "user-1")

    def test_order_and_filtering(self, repository):
        """Test listing order and removal of eligible items that are already active."""
        assignments = repository.list_assignments()

        assert [(a.kind, a.state, a.resource_id) for a in assignments] == [
            (ROLE, ACTIVE, "role-reader"),
            (ROLE, ELIGIBLE, "role-admin"),
            (GROUP, ACTIVE, "group-dev"),
            (GROUP, ELIGIBLE, "group-ops"),
        ]

    def test_unfiltered_keeps_active_counterparts(self, repository):
        """Test that filtering can be turned off."""
        assignments = repository.list_assignments(filter_active_from_eligible=False)

        eligible = [a.resource_id for a in assignments if a.state == ELIGIBLE and a.kind == ROLE]
        assert eligible == ["role-admin", "role-reader"]

    def test_eligible_only_still_filters(self, repository):
        """Test that active records are fetched for filtering even when hidden."""
        assignments = repository.list_assignments(include_active=False, include_groups=False)

        assert [a.resource_id for a in assignments] == ["role-admin"]

    def test_names_come_from_expanded_definition(self, repository):
        """Test that display names come from the expanded definition."""
        names = {a.resource_id: a.name for a in repository.list_assignments()}
        assert names["role-admin"] == "Global Administrator"
        assert names["group-ops"] == "Ops"

    def test_failed_collection_does_not_hide_others(self, seeded, repository):
        """Test that one failed collection leaves the others listed."""
        seeded.failing_collections.add((GROUP, ACTIVE))

        assignments = repository.list_assignments()

        assert (GROUP, ACTIVE) not in {(a.kind, a.state) for a in assignments}
        assert any(a.kind == GROUP and a.state == ELIGIBLE for a in assignments)
        assert any(a.kind == ROLE for a in assignments)

    def test_raising_collection_is_isolated(self):
        """Test that a raising collection is treated as empty."""
        client = Mock()
        client.list_instances.side_effect = [
            RuntimeError("boom"),
            ConnectorResult(True, data=[{"roleDefinitionId": "r1", "roleEligibilityScheduleId": "s1",
                                         "roleDefinition": {"displayName": "Reader"}}]),
        ]
        repository = AssignmentRepository(client, "user-1")

        assignments = repository.list_assignments(include_groups=False)

        assert [a.name for a in assignments] == ["Reader"]

    def test_authorization_failure_propagates(self):
        """Test that an authorization failure is raised while listing."""
        client = Mock()
        client.list_instances.side_effect = ConnectionAuthorizationError("expired")
        repository = AssignmentRepository(client, "user-1")

        with pytest.raises(ConnectionAuthorizationError):
            repository.list_assignments()

    def test_find(self, repository):
        """Test lookup of a single live assignment."""
        found = repository.find(GROUP, "group-dev", ACTIVE)
        assert found is not None and found.name == "Developers"
        assert repository.find(GROUP, "group-ops", ACTIVE) is None

    def test_find_raises_when_collection_unreadable(self, seeded, repository):
        """Test that find reports a failed read instead of a missing record."""
        seeded.failing_collections.add((GROUP, ACTIVE))

        with pytest.raises(DirectoryApiError) as exc_info:
            repository.find(GROUP, "group-dev", ACTIVE)

        assert exc_info.value.status_code == 503
        assert exc_info.value.message.startswith("Could not read active groups")
        assert "Code: ServiceUnavailable" in exc_info.value.details

    def test_find_wraps_raising_client(self):
        """Test that an unexpected client exception becomes a directory error."""
        client = Mock()
        client.list_instances.side_effect = RuntimeError("connection reset")
        repository = AssignmentRepository(client, "user-1")

        with pytest.raises(DirectoryApiError, match="connection reset"):
            repository.find(ROLE, "r1", ELIGIBLE)

    def test_each_call_builds_fresh_objects(self, repository):
        """Test that nothing is cached between calls."""
        first = repository.list_assignments()
        second = repository.list_assignments()
        assert first[0] is not second[0]


class TestNormalizeInstance:
    """Test cases for record normalization."""

    def test_active_without_end_is_dropped(self):
        """Test that an active record without an end time is dropped."""
        raw = {"roleDefinitionId": "r1", "roleAssignmentScheduleId": "s1", "endDateTime": None}
        assert normalize_instance(raw, ROLE, ACTIVE) is None

    def test_active_without_schedule_is_dropped(self):
        """Test that an active record without a schedule id is dropped."""
        raw = {"groupId": "g1", "endDateTime": "2030-01-01T00:00:00Z"}
        assert normalize_instance(raw, GROUP, ACTIVE) is None

    def test_missing_resource_is_dropped(self):
        """Test that a record without a resource id is dropped."""
        assert normalize_instance({"id": "x"}, GROUP, ELIGIBLE) is None

    def test_eligible_without_end_is_permanent(self):
        """Test that an eligible record without an end time is permanent."""
        raw = {"groupId": "g1", "eligibilityScheduleId": "s1", "group": {"displayName": "Ops"},
               "accessId": "member", "memberType": "Direct"}
        assignment = normalize_instance(raw, GROUP, ELIGIBLE)
        assert assignment.is_permanent
        assert assignment.access_id == "member"
        assert assignment.member_type == "Direct"

    def test_resolver_fills_missing_name(self, client):
        """Test that the resolver supplies a missing display name."""
        client.roles["r1"] = "Security Reader"
        raw = {"roleDefinitionId": "r1", "roleEligibilityScheduleId": "s1"}

        assignment = normalize_instance(raw, ROLE, ELIGIBLE, NameResolver(client))

        assert assignment.name == "Security Reader"

    def test_unresolved_name_falls_back_to_id(self, client):
        """Test that an unresolved name falls back to the resource id."""
        raw = {"roleDefinitionId": "r-unknown", "roleEligibilityScheduleId": "s1"}
        assignment = normalize_instance(raw, ROLE, ELIGIBLE, NameResolver(client))
        assert assignment.name == "r-unknown"


def test_filter_eligible_by_identity():
    """Test that filtering matches on kind and resource id together."""
    def make(kind, state, resource_id):
        return Assignment(kind=kind, state=state, name=resource_id, resource_id=resource_id)

    eligible = [make(ROLE, ELIGIBLE, "x"), make(GROUP, ELIGIBLE, "x"), make(ROLE, ELIGIBLE, "y")]
    active = [make(ROLE, ACTIVE, "x")]

    remaining = filter_eligible(eligible, active)

    assert [(a.kind, a.resource_id) for a in remaining] == [(GROUP, "x"), (ROLE, "y")]
