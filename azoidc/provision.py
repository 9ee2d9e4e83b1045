from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from azoidc import azure_api
from azoidc.auth import AzureSession
from azoidc.scope import Scope, ScopeKind


@dataclass(frozen=True)
class ProvisionRequest:
    display_name: str
    role_name: str
    scope: Scope
    subject: str
    credential_name: str


@dataclass(frozen=True)
class ProvisionResult:
    client_id: str
    tenant_id: str
    subscription_id: Optional[str]
    application_object_id: str
    service_principal_id: str
    role_name: str
    role_assignment_id: str
    scope: Scope
    subject: str
    credential_name: str


@dataclass
class CreatedObjects:
    """Entra ID objects created so far in this run."""

    application_object_id: Optional[str] = None
    client_id: Optional[str] = None
    service_principal_id: Optional[str] = None
    role_assignment_id: Optional[str] = None

    def __bool__(self) -> bool:
        return self.application_object_id is not None


class ProvisioningFailed(RuntimeError):
    def __init__(self, step: str, cause: BaseException, created: CreatedObjects) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
        self.created = created


def provision(
    session: AzureSession,
    request: ProvisionRequest,
    *,
    stage_cb: Optional[Callable[[str], None]] = None,
) -> ProvisionResult:
    """
    Create the application, its service principal, the role assignment and
    the federated credential, in that order.

    The federated credential is only created once the role assignment exists.
    Any failure is re-raised as ProvisioningFailed with the objects created
    before it, nothing is rolled back here (see `cleanup`).
    """
    stage_cb = stage_cb or (lambda _: None)
    created = CreatedObjects()
    step = "create_application"
    try:
        stage_cb(step)
        app = azure_api.create_application(session=session, display_name=request.display_name)
        created.application_object_id = app["id"]
        created.client_id = app["app_id"]

        step = "create_service_principal"
        stage_cb(step)
        sp = azure_api.create_service_principal(session=session, app_id=app["app_id"])
        created.service_principal_id = sp["id"]

        step = "resolve_role"
        stage_cb(step)
        role_definition_id = azure_api.find_role_definition_id(
            session=session,
            scope=request.scope.scope_id,
            role_name=request.role_name,
        )

        step = "create_role_assignment"
        stage_cb(step)
        created.role_assignment_id = azure_api.create_role_assignment(
            session=session,
            scope=request.scope.scope_id,
            principal_id=sp["id"],
            role_definition_id=role_definition_id,
        )

        step = "create_federated_credential"
        stage_cb(step)
        azure_api.create_federated_credential(
            session=session,
            application_object_id=app["id"],
            name=request.credential_name,
            subject=request.subject,
        )
    except Exception as e:
        raise ProvisioningFailed(step, e, created) from e

    subscription_id = None if request.scope.kind is ScopeKind.MANAGEMENT_GROUP else request.scope.subscription_id
    return ProvisionResult(
        client_id=app["app_id"],
        tenant_id=session.tenant_id,
        subscription_id=subscription_id,
        application_object_id=app["id"],
        service_principal_id=sp["id"],
        role_name=request.role_name,
        role_assignment_id=created.role_assignment_id,
        scope=request.scope,
        subject=request.subject,
        credential_name=request.credential_name,
    )


def cleanup(session: AzureSession, created: CreatedObjects) -> bool:
    """
    Delete what this run created: the role assignment first, then the
    application (Entra ID removes its service principal with it).
    Returns False when there was nothing to delete.
    """
    if not created.application_object_id:
        return False
    if created.role_assignment_id:
        azure_api.delete_role_assignment(session=session, role_assignment_id=created.role_assignment_id)
    azure_api.delete_application(session=session, application_object_id=created.application_object_id)
    return True
