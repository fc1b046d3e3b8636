"""
Microsoft Graph Connector for the PIM Engine.

Provides integration with Microsoft Entra ID privileged identity management
through Microsoft Graph: role and group schedule instances, schedule
requests, approvals and display-name lookups.
"""

import base64
import json
import logging
import time
from typing import Any, Dict, List, Optional

import requests
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential, DeviceCodeCredential, InteractiveBrowserCredential

from ..errors import ConnectionAuthorizationError
from ..models import AssignmentKind, AssignmentState
from .base_connector import BaseDirectoryClient, ConnectorResult

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

DEFAULT_REQUIRED_SCOPES = [
    "RoleAssignmentSchedule.ReadWrite.Directory",
    "RoleEligibilitySchedule.Read.Directory",
    "PrivilegedAssignmentSchedule.ReadWrite.AzureADGroup",
    "PrivilegedEligibilitySchedule.Read.AzureADGroup",
]

ROLE_BASE = "/roleManagement/directory"
GROUP_BASE = "/identityGovernance/privilegedAccess/group"

INSTANCE_PATHS = {
    (AssignmentKind.ROLE, AssignmentState.ACTIVE): f"{ROLE_BASE}/roleAssignmentScheduleInstances",
    (AssignmentKind.ROLE, AssignmentState.ELIGIBLE): f"{ROLE_BASE}/roleEligibilityScheduleInstances",
    (AssignmentKind.GROUP, AssignmentState.ACTIVE): f"{GROUP_BASE}/assignmentScheduleInstances",
    (AssignmentKind.GROUP, AssignmentState.ELIGIBLE): f"{GROUP_BASE}/eligibilityScheduleInstances",
}

REQUEST_PATHS = {
    AssignmentKind.ROLE: f"{ROLE_BASE}/roleAssignmentScheduleRequests",
    AssignmentKind.GROUP: f"{GROUP_BASE}/assignmentScheduleRequests",
}

APPROVAL_PATHS = {
    AssignmentKind.ROLE: f"{ROLE_BASE}/roleAssignmentApprovals",
    AssignmentKind.GROUP: f"{GROUP_BASE}/assignmentApprovals",
}


def translate_error(response: requests.Response) -> ConnectorResult:
    """
    Turn a failed Graph response into a ConnectorResult.

    The short message names the HTTP status and the provider message; the
    detail lines carry the error code, message and any per-field sub-errors.

    Args:
        response: The failed HTTP response

    Returns:
        Failed ConnectorResult with message, error text and detail lines
    """
    try:
        body = response.json().get("error", {})
    except ValueError:
        body = {}

    code = body.get("code") or "UnknownError"
    message = body.get("message") or response.text or response.reason or "No error message"

    details = [f"Code: {code}", f"Message: {message}"]
    for sub_error in body.get("details") or []:
        target = sub_error.get("target")
        prefix = f"{target}: " if target else ""
        details.append(f"- {prefix}{sub_error.get('code', '')} {sub_error.get('message', '')}".rstrip())

    inner = body.get("innerError") or {}
    if inner.get("request-id"):
        details.append(f"Request id: {inner['request-id']}")

    # Sub-error messages often name the missing field, keep them in the error text
    error_text = " ".join([message] + [d for d in details[2:] if d.startswith("- ")])

    return ConnectorResult(
        False,
        f"HTTP {response.status_code}: {message}",
        error=error_text,
        details=details,
        status_code=response.status_code,
    )


def granted_scopes(access_token: str) -> List[str]:
    """Read the delegated scopes from the token's scp claim (no signature check)."""
    try:
        payload_segment = access_token.split(".")[1]
        padded = payload_segment + "=" * (-len(payload_segment) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded))
    except (IndexError, ValueError):
        return []
    return (claims.get("scp") or "").split()


def scope_covered(required: str, scopes: List[str]) -> bool:
    """A ReadWrite scope also grants the matching Read scope."""
    if required in scopes:
        return True
    return ".Read." in required and required.replace(".Read.", ".ReadWrite.", 1) in scopes


class GraphConnector(BaseDirectoryClient):
    """Microsoft Graph client for PIM role and group assignments."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 credential: Optional[Any] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(config, mock_mode=False)

        self.base_url = self.config.get("graph_base_url", GRAPH_BASE_URL).rstrip("/")
        self.timeout = self.config.get("request_timeout", 30)
        self.required_scopes = self.config.get("required_scopes", DEFAULT_REQUIRED_SCOPES)
        self.credential = credential or self._build_credential()
        self.session = session or requests.Session()
        self._token = None
        self._principal_id: Optional[str] = None

    def _build_credential(self):
        """Create the azure-identity credential selected by configuration."""
        auth_mode = self.config.get("auth_mode", "default")
        tenant_id = self.config.get("tenant_id")
        client_id = self.config.get("client_id")

        if auth_mode == "interactive":
            return InteractiveBrowserCredential(tenant_id=tenant_id, client_id=client_id)
        if auth_mode == "device_code":
            return DeviceCodeCredential(tenant_id=tenant_id, client_id=client_id)
        return DefaultAzureCredential()

    def _access_token(self) -> str:
        if self._token is None or self._token.expires_on - 60 < time.time():
            try:
                self._token = self.credential.get_token(GRAPH_SCOPE)
            except ClientAuthenticationError as e:
                raise ConnectionAuthorizationError(
                    "Unable to acquire a Microsoft Graph token", [str(e)]
                ) from e
        return self._token.token

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 body: Optional[Dict[str, Any]] = None) -> ConnectorResult:
        """Issue one Graph call and translate the outcome into a ConnectorResult."""
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.request(method, url, params=params, json=body,
                                            headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            error_msg = f"{method} {path} failed: {e}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=str(e), details=[f"Message: {e}"])

        if not response.ok:
            result = translate_error(response)
            logger.debug(f"{method} {path} -> {response.status_code}: {result.error}")
            return result

        data = response.json() if response.content else None
        return ConnectorResult(True, f"{method} {path}", data=data, status_code=response.status_code)

    def _get_collection(self, path: str, params: Optional[Dict[str, Any]] = None) -> ConnectorResult:
        """GET a collection, following @odata.nextLink pages."""
        items: List[Dict[str, Any]] = []
        result = self._request("GET", path, params=params)

        while True:
            if not result.success:
                return result
            items.extend(result.data.get("value", []))
            next_link = result.data.get("@odata.nextLink")
            if not next_link:
                break
            result = self._request("GET", next_link)

        return ConnectorResult(True, f"Found {len(items)} records", data=items)

    def get_current_principal_id(self) -> str:
        if self._principal_id:
            return self._principal_id

        token = self._access_token()
        scopes = granted_scopes(token)
        missing = [s for s in self.required_scopes if scopes and not scope_covered(s, scopes)]
        if missing:
            raise ConnectionAuthorizationError(
                "The session is missing required permission scopes",
                [f"Missing: {scope}" for scope in missing],
            )

        result = self._request("GET", "/me", params={"$select": "id,displayName"})
        if not result.success:
            raise ConnectionAuthorizationError(
                f"Unable to read the signed-in user: {result.message}", result.details
            )

        self._principal_id = result.data["id"]
        logger.info(f"Connected to Microsoft Graph as {result.data.get('displayName')}")
        return self._principal_id

    def list_instances(self, kind: AssignmentKind, state: AssignmentState,
                       principal_id: str) -> ConnectorResult:
        expand = "roleDefinition" if kind == AssignmentKind.ROLE else "group"
        params = {
            "$filter": f"principalId eq '{principal_id}'",
            "$expand": expand,
        }
        return self._get_collection(INSTANCE_PATHS[(kind, state)], params=params)

    def submit_schedule_request(self, kind: AssignmentKind, payload: Dict[str, Any]) -> ConnectorResult:
        result = self._request("POST", REQUEST_PATHS[kind], body=payload)
        if result.success:
            logger.info(
                f"Submitted {payload.get('action')} for {kind.value.lower()} "
                f"(validation only: {payload.get('isValidationOnly', False)})"
            )
        return result

    def list_schedule_requests(self, kind: AssignmentKind, on: str = "approver") -> ConnectorResult:
        path = f"{REQUEST_PATHS[kind]}/filterByCurrentUser(on='{on}')"
        params = {"$filter": "status eq 'PendingApproval'"}
        return self._get_collection(path, params=params)

    def list_approval_steps(self, kind: AssignmentKind, approval_id: str) -> ConnectorResult:
        return self._get_collection(f"{APPROVAL_PATHS[kind]}/{approval_id}/steps")

    def submit_approval_decision(self, kind: AssignmentKind, approval_id: str, stage_id: str,
                                 body: Dict[str, Any]) -> ConnectorResult:
        return self._request("PATCH", f"{APPROVAL_PATHS[kind]}/{approval_id}/steps/{stage_id}", body=body)

    def cancel_schedule_request(self, kind: AssignmentKind, request_id: str) -> ConnectorResult:
        return self._request("POST", f"{REQUEST_PATHS[kind]}/{request_id}/cancel")

    def get_user_name(self, user_id: str) -> ConnectorResult:
        return self._display_name(f"/users/{user_id}")

    def get_group_name(self, group_id: str) -> ConnectorResult:
        return self._display_name(f"/groups/{group_id}")

    def get_role_name(self, role_id: str) -> ConnectorResult:
        return self._display_name(f"{ROLE_BASE}/roleDefinitions/{role_id}")

    def _display_name(self, path: str) -> ConnectorResult:
        result = self._request("GET", path, params={"$select": "displayName"})
        if not result.success:
            return result
        return ConnectorResult(True, result.message, data=result.data.get("displayName"))
