from __future__ import annotations

import uuid
from typing import Any, Optional

import requests
from azure.core.exceptions import HttpResponseError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient

from azoidc.auth import ARM_SCOPE, GRAPH_SCOPE, AzureSession


ARM_BASE = "https://management.azure.com"
GRAPH_BASE = "https://graph.microsoft.com/v1.0"
MGMT_API_VERSION = "2020-05-01"
AUTHZ_API_VERSION = "2022-04-01"

GITHUB_OIDC_ISSUER = "https://token.actions.githubusercontent.com"
AZURE_AD_TOKEN_EXCHANGE = "api://AzureADTokenExchange"


class ProviderError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthorizationFailed(ProviderError):
    """The signed-in identity may not perform the operation at this scope."""


class RoleNotFound(ProviderError):
    pass


def _as_dict(obj: Any) -> Any:
    if obj is None or isinstance(obj, dict):
        return obj
    if hasattr(obj, "as_dict"):
        return obj.as_dict()
    return dict(obj.__dict__)


def _request(
    session: AzureSession,
    method: str,
    url: str,
    *,
    token_scope: str,
    params: Optional[dict[str, str]] = None,
    body: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    token = session.token(token_scope)
    r = requests.request(
        method,
        url,
        headers={"Authorization": f"Bearer {token}"},
        params=params,
        json=body,
        timeout=60,
    )
    if r.status_code == 403:
        raise AuthorizationFailed(f"{method} {url} was denied (403): {r.text[:300]}", status_code=403)
    if r.status_code >= 400:
        raise ProviderError(f"{method} failed ({r.status_code}) {url}: {r.text[:300]}", status_code=r.status_code)
    if r.status_code == 204 or not r.content:
        return {}
    data = r.json()
    if not isinstance(data, dict):
        raise ProviderError(f"Unexpected response from {url} (not a JSON object)")
    return data


def _arm(session: AzureSession, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
    return _request(session, method, url, token_scope=ARM_SCOPE, **kwargs)


def _graph(session: AzureSession, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
    return _request(session, method, f"{GRAPH_BASE}{path}", token_scope=GRAPH_SCOPE, **kwargs)


# --- Discovery ---------------------------------------------------------------


def list_management_groups(*, session: AzureSession) -> list[dict[str, Any]]:
    url: Optional[str] = f"{ARM_BASE}/providers/Microsoft.Management/managementGroups"
    params: Optional[dict[str, str]] = {"api-version": MGMT_API_VERSION}
    out: list[dict[str, Any]] = []
    while url:
        data = _arm(session, "GET", url, params=params)
        params = None  # nextLink carries the query
        for mg in data.get("value") or []:
            if not isinstance(mg, dict) or not mg.get("name"):
                continue
            props = mg.get("properties") or {}
            out.append(
                {
                    "id": mg.get("id"),
                    "name": mg["name"],
                    "display_name": props.get("displayName") or mg["name"],
                }
            )
        url = data.get("nextLink")
    return out


def list_subscriptions(*, session: AzureSession) -> list[dict[str, Any]]:
    client = SubscriptionClient(session.credential)
    out: list[dict[str, Any]] = []
    for s in client.subscriptions.list():
        d = _as_dict(s)
        sid = (d.get("subscription_id") or d.get("subscriptionId") or "").strip()
        if not sid:
            continue
        out.append(
            {
                "subscription_id": sid,
                "display_name": d.get("display_name") or d.get("displayName") or sid,
                "state": d.get("state"),
            }
        )
    out.sort(key=lambda s: (s["display_name"].lower(), s["subscription_id"]))
    return out


def resource_group_exists(*, session: AzureSession, subscription_id: str, name: str) -> bool:
    client = ResourceManagementClient(session.credential, subscription_id)
    return bool(client.resource_groups.check_existence(name))


# --- Entra ID (Microsoft Graph) ---------------------------------------------


def create_application(*, session: AzureSession, display_name: str) -> dict[str, Any]:
    data = _graph(
        session,
        "POST",
        "/applications",
        body={"displayName": display_name, "signInAudience": "AzureADMyOrg"},
    )
    return {"id": data["id"], "app_id": data["appId"], "display_name": data.get("displayName")}


def create_service_principal(*, session: AzureSession, app_id: str) -> dict[str, Any]:
    data = _graph(session, "POST", "/servicePrincipals", body={"appId": app_id})
    return {"id": data["id"], "app_id": data.get("appId") or app_id}


def create_federated_credential(
    *,
    session: AzureSession,
    application_object_id: str,
    name: str,
    subject: str,
    issuer: str = GITHUB_OIDC_ISSUER,
    audience: str = AZURE_AD_TOKEN_EXCHANGE,
) -> dict[str, Any]:
    body = {
        "name": name,
        "issuer": issuer,
        "subject": subject,
        "audiences": [audience],
        "description": f"GitHub Actions OIDC for {subject}",
    }
    return _graph(session, "POST", f"/applications/{application_object_id}/federatedIdentityCredentials", body=body)


def delete_application(*, session: AzureSession, application_object_id: str) -> None:
    _graph(session, "DELETE", f"/applications/{application_object_id}")


# --- RBAC ----------------------------------------------------------------------


def _subscription_of(scope: str) -> Optional[str]:
    parts = scope.strip("/").split("/")
    if len(parts) >= 2 and parts[0].lower() == "subscriptions":
        return parts[1]
    return None


def find_role_definition_id(*, session: AzureSession, scope: str, role_name: str) -> str:
    escaped = role_name.replace("'", "''")
    flt = f"roleName eq '{escaped}'"
    sub_id = _subscription_of(scope)
    if sub_id:
        authz = AuthorizationManagementClient(session.credential, sub_id)
        try:
            found = [_as_dict(rd) for rd in authz.role_definitions.list(scope, filter=flt)]
        except HttpResponseError as e:
            if e.status_code == 403:
                raise AuthorizationFailed(str(e), status_code=403) from e
            raise
    else:
        data = _arm(
            session,
            "GET",
            f"{ARM_BASE}{scope}/providers/Microsoft.Authorization/roleDefinitions",
            params={"api-version": AUTHZ_API_VERSION, "$filter": flt},
        )
        found = [rd for rd in data.get("value") or [] if isinstance(rd, dict)]
    for rd in found:
        rid = rd.get("id")
        if rid:
            return rid
    raise RoleNotFound(f"Role '{role_name}' not found at scope {scope}")


def create_role_assignment(
    *,
    session: AzureSession,
    scope: str,
    principal_id: str,
    role_definition_id: str,
) -> str:
    """Grant `role_definition_id` to a service principal at `scope`; returns the assignment id."""
    assignment_name = str(uuid.uuid4())
    sub_id = _subscription_of(scope)
    if sub_id:
        authz = AuthorizationManagementClient(session.credential, sub_id)
        params = RoleAssignmentCreateParameters(
            role_definition_id=role_definition_id,
            principal_id=principal_id,
            principal_type="ServicePrincipal",
        )
        try:
            ra = authz.role_assignments.create(scope, assignment_name, params)
        except HttpResponseError as e:
            if e.status_code == 403:
                raise AuthorizationFailed(str(e), status_code=403) from e
            raise
        return _as_dict(ra).get("id") or f"{scope}/providers/Microsoft.Authorization/roleAssignments/{assignment_name}"

    data = _arm(
        session,
        "PUT",
        f"{ARM_BASE}{scope}/providers/Microsoft.Authorization/roleAssignments/{assignment_name}",
        params={"api-version": AUTHZ_API_VERSION},
        body={
            "properties": {
                "roleDefinitionId": role_definition_id,
                "principalId": principal_id,
                "principalType": "ServicePrincipal",
            }
        },
    )
    return data.get("id") or f"{scope}/providers/Microsoft.Authorization/roleAssignments/{assignment_name}"


def delete_role_assignment(*, session: AzureSession, role_assignment_id: str) -> None:
    _arm(session, "DELETE", f"{ARM_BASE}{role_assignment_id}", params={"api-version": AUTHZ_API_VERSION})
