"""
Assignment Repository for the PIM Engine.

Fetches role and group schedule instances from the directory and
normalizes them into Assignment objects. Each query builds fresh objects;
nothing is cached between calls.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..connectors import BaseDirectoryClient, ConnectorResult, NameResolver
from ..errors import ConnectionAuthorizationError, DirectoryApiError
from ..models import Assignment, AssignmentKind, AssignmentState

logger = logging.getLogger(__name__)

# (kind, state) -> (resource id field, expanded definition field, schedule id field)
RECORD_FIELDS = {
    (AssignmentKind.ROLE, AssignmentState.ACTIVE): ("roleDefinitionId", "roleDefinition", "roleAssignmentScheduleId"),
    (AssignmentKind.ROLE, AssignmentState.ELIGIBLE): ("roleDefinitionId", "roleDefinition", "roleEligibilityScheduleId"),
    (AssignmentKind.GROUP, AssignmentState.ACTIVE): ("groupId", "group", "assignmentScheduleId"),
    (AssignmentKind.GROUP, AssignmentState.ELIGIBLE): ("groupId", "group", "eligibilityScheduleId"),
}


def normalize_instance(raw: Dict[str, Any], kind: AssignmentKind, state: AssignmentState,
                       resolver: Optional[NameResolver] = None) -> Optional[Assignment]:
    """
    Normalize one raw schedule instance.

    Active records without a schedule id or an end time are incomplete
    provider records and are dropped.

    Args:
        raw: Raw provider record
        kind: Role or group
        state: Eligible or active
        resolver: Optional name resolver used when the record carries no
                  expanded display name

    Returns:
        Assignment, or None when the record is dropped
    """
    resource_field, expanded_field, schedule_field = RECORD_FIELDS[(kind, state)]
    resource_id = raw.get(resource_field)
    schedule_id = raw.get(schedule_field)

    if not resource_id:
        logger.debug(f"Dropping {kind.value.lower()} record without {resource_field}: {raw.get('id')}")
        return None

    if state == AssignmentState.ACTIVE and (not schedule_id or not raw.get("endDateTime")):
        logger.debug(f"Dropping incomplete active {kind.value.lower()} record {raw.get('id')}")
        return None

    name = (raw.get(expanded_field) or {}).get("displayName")
    if not name and resolver is not None:
        if kind == AssignmentKind.ROLE:
            name = resolver.resolve_role_name(resource_id)
        else:
            name = resolver.resolve_group_name(resource_id)

    try:
        return Assignment(
            kind=kind,
            state=state,
            name=name or resource_id,
            resource_id=resource_id,
            start_time=raw.get("startDateTime"),
            end_time=raw.get("endDateTime"),
            created_time=raw.get("createdDateTime"),
            instance_id=raw.get("id"),
            schedule_id=schedule_id,
            member_type=raw.get("memberType"),
            access_id=raw.get("accessId"),
            raw=raw,
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed {kind.value.lower()} record {raw.get('id')}: {e}")
        return None


class AssignmentRepository:
    """
    Lists the caller's eligible and active privileged assignments.

    Each of the four provider collections is fetched on its own; a failed
    fetch is logged and treated as empty so the others are still returned.
    """

    def __init__(self, client: BaseDirectoryClient, principal_id: str,
                 resolver: Optional[NameResolver] = None):
        """
        Initialize the repository.

        Args:
            client: Directory client (the session object)
            principal_id: Object id of the caller
            resolver: Name resolver for records without expanded names
        """
        self.client = client
        self.principal_id = principal_id
        self.resolver = resolver or NameResolver(client)

    def list_assignments(self, include_roles: bool = True, include_groups: bool = True,
                         include_active: bool = True, include_eligible: bool = True,
                         filter_active_from_eligible: bool = True) -> List[Assignment]:
        """
        List normalized assignments.

        Order is active roles, eligible roles, active groups, eligible groups,
        each in provider order.

        Args:
            include_roles: Include directory role assignments
            include_groups: Include group memberships
            include_active: Include active assignments
            include_eligible: Include eligible assignments
            filter_active_from_eligible: Hide eligible assignments that already
                                         have an active counterpart

        Returns:
            List of Assignment objects
        """
        kinds = []
        if include_roles:
            kinds.append(AssignmentKind.ROLE)
        if include_groups:
            kinds.append(AssignmentKind.GROUP)

        assignments: List[Assignment] = []
        for kind in kinds:
            # Active records are needed for filtering even when not displayed
            need_active = include_active or (include_eligible and filter_active_from_eligible)
            active = self._fetch(kind, AssignmentState.ACTIVE) if need_active else []

            if include_active:
                assignments.extend(active)

            if include_eligible:
                eligible = self._fetch(kind, AssignmentState.ELIGIBLE)
                if filter_active_from_eligible:
                    eligible = filter_eligible(eligible, active)
                assignments.extend(eligible)

        logger.info(f"Listed {len(assignments)} assignments for {self.principal_id}")
        return assignments

    def find(self, kind: AssignmentKind, resource_id: str,
             state: AssignmentState) -> Optional[Assignment]:
        """
        Fetch the live assignment for (kind, resource_id, state).

        Returns:
            The assignment, or None when the collection was read and holds
            no matching record

        Raises:
            DirectoryApiError: if the collection could not be read
        """
        result = self._query(kind, state)
        if not result.success:
            raise DirectoryApiError(
                f"Could not read {state.value.lower()} {kind.value.lower()}s: {result.message}",
                result.details,
                result.status_code,
            )

        for assignment in self._normalize(result, kind, state):
            if assignment.resource_id == resource_id:
                return assignment
        return None

    def _query(self, kind: AssignmentKind, state: AssignmentState) -> ConnectorResult:
        try:
            return self.client.list_instances(kind, state, self.principal_id)
        except ConnectionAuthorizationError:
            raise
        except Exception as e:
            return ConnectorResult(False, str(e), error=str(e), details=[f"Message: {e}"])

    def _fetch(self, kind: AssignmentKind, state: AssignmentState) -> List[Assignment]:
        result = self._query(kind, state)
        if not result.success:
            logger.warning(f"Failed to fetch {state.value.lower()} {kind.value.lower()}s: {result.message}")
            return []
        return self._normalize(result, kind, state)

    def _normalize(self, result: ConnectorResult, kind: AssignmentKind,
                   state: AssignmentState) -> List[Assignment]:
        assignments = []
        for raw in result.data or []:
            assignment = normalize_instance(raw, kind, state, self.resolver)
            if assignment is not None:
                assignments.append(assignment)
        return assignments


def filter_eligible(eligible: List[Assignment], active: List[Assignment]) -> List[Assignment]:
    """Remove eligible assignments whose (kind, resource_id) is already active."""
    active_keys = {a.identity for a in active}
    return [a for a in eligible if a.identity not in active_keys]
