"""
Completion Poller for the PIM Engine.

Waits until the directory stops reporting an active instance after a
deactivation has been submitted.
"""

import logging
import time
from typing import Callable, Optional

from ..connectors import BaseDirectoryClient
from ..models import AssignmentKind, AssignmentState

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_INTERVAL_SECONDS = 5

RESOURCE_FIELDS = {
    AssignmentKind.ROLE: "roleDefinitionId",
    AssignmentKind.GROUP: "groupId",
}


class CompletionPoller:
    """Polls the active-instance collection until a deactivation is visible."""

    def __init__(self, client: BaseDirectoryClient, principal_id: str,
                 timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
                 sleep: Optional[Callable[[float], None]] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.client = client
        self.principal_id = principal_id
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.sleep = sleep or time.sleep
        self.clock = clock or time.monotonic

    def wait_for_deactivation(self, kind: AssignmentKind, resource_id: str,
                              timeout_seconds: Optional[float] = None,
                              interval_seconds: Optional[float] = None) -> bool:
        """
        Block until no active instance for resource_id remains.

        Args:
            kind: Role or group
            resource_id: Role definition id or group id
            timeout_seconds: Overall wait budget
            interval_seconds: Pause between checks

        Returns:
            True once the instance is gone, False if it is still present
            when the timeout elapses
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        interval = self.interval_seconds if interval_seconds is None else interval_seconds
        deadline = self.clock() + timeout
        checks = 0

        while True:
            checks += 1
            if not self._still_active(kind, resource_id):
                logger.info(f"Deactivation of {resource_id} confirmed after {checks} check(s)")
                return True

            if self.clock() + interval > deadline:
                logger.warning(f"{resource_id} still active after {timeout}s ({checks} checks)")
                return False

            self.sleep(interval)

    def _still_active(self, kind: AssignmentKind, resource_id: str) -> bool:
        result = self.client.list_instances(kind, AssignmentState.ACTIVE, self.principal_id)
        if not result.success:
            # Unknown counts as still present
            logger.warning(f"Could not check active {kind.value.lower()}s: {result.message}")
            return True

        field = RESOURCE_FIELDS[kind]
        return any(record.get(field) == resource_id for record in result.data or [])
