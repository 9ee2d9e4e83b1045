from __future__ import annotations

import pytest

from azoidc.azure_api import AZURE_AD_TOKEN_EXCHANGE, GITHUB_OIDC_ISSUER, AuthorizationFailed, ProviderError
from azoidc.provision import CreatedObjects, ProvisioningFailed, ProvisionRequest, cleanup, provision
from azoidc.scope import Scope
from conftest import SUB_DEV, TENANT_ID

SUBJECT = "repo:paul-mccormack/actions-entra-auth:ref:refs/heads/main"


def _request(scope: Scope) -> ProvisionRequest:
    return ProvisionRequest(
        display_name="github-actions-entra-auth",
        role_name="Contributor",
        scope=scope,
        subject=SUBJECT,
        credential_name="actions-entra-auth-main",
    )


def test_provision_calls_in_order(session, fake_azure):
    stages = []
    result = provision(session, _request(Scope.subscription(SUB_DEV, "Dev")), stage_cb=stages.append)

    assert [name for name, _ in fake_azure.calls] == [
        "create_application",
        "create_service_principal",
        "find_role_definition_id",
        "create_role_assignment",
        "create_federated_credential",
    ]
    assert stages == [
        "create_application",
        "create_service_principal",
        "resolve_role",
        "create_role_assignment",
        "create_federated_credential",
    ]
    assert result.client_id == "app-client-id"
    assert result.tenant_id == TENANT_ID
    assert result.subscription_id == SUB_DEV
    assert result.service_principal_id == "sp-object-id"


def test_role_assignment_targets_service_principal_at_scope(session, fake_azure):
    scope = Scope.resource_group(SUB_DEV, "rg-app")
    provision(session, _request(scope))
    (ra,) = fake_azure.called("create_role_assignment")
    assert ra["scope"] == scope.scope_id
    assert ra["principal_id"] == "sp-object-id"
    assert ra["role_definition_id"].endswith("/roleDefinitions/role-contributor")


def test_federated_credential_uses_application_object_id_and_subject(session, fake_azure):
    provision(session, _request(Scope.subscription(SUB_DEV)))
    (fic,) = fake_azure.called("create_federated_credential")
    assert fic == {
        "application_object_id": "app-object-id",
        "name": "actions-entra-auth-main",
        "subject": SUBJECT,
    }


def test_management_group_result_has_no_subscription(session, fake_azure):
    result = provision(session, _request(Scope.management_group("mg-platform")))
    assert result.subscription_id is None


def test_authorization_failure_stops_before_federated_credential(session, fake_azure):
    fake_azure.failures["create_role_assignment"] = AuthorizationFailed("denied", status_code=403)

    with pytest.raises(ProvisioningFailed) as exc_info:
        provision(session, _request(Scope.subscription(SUB_DEV)))

    failure = exc_info.value
    assert failure.step == "create_role_assignment"
    assert isinstance(failure.cause, AuthorizationFailed)
    assert fake_azure.called("create_federated_credential") == []
    assert failure.created.application_object_id == "app-object-id"
    assert failure.created.service_principal_id == "sp-object-id"
    assert failure.created.role_assignment_id is None


def test_failure_before_anything_created(session, fake_azure):
    fake_azure.failures["create_application"] = ProviderError("boom", status_code=500)
    with pytest.raises(ProvisioningFailed) as exc_info:
        provision(session, _request(Scope.subscription(SUB_DEV)))
    assert not exc_info.value.created
    assert [name for name, _ in fake_azure.calls] == ["create_application"]


def test_cleanup_deletes_assignment_then_application(session, fake_azure):
    created = CreatedObjects(
        application_object_id="app-object-id",
        client_id="app-client-id",
        service_principal_id="sp-object-id",
        role_assignment_id=f"/subscriptions/{SUB_DEV}/providers/Microsoft.Authorization/roleAssignments/ra-1",
    )
    assert cleanup(session, created) is True
    assert [name for name, _ in fake_azure.calls] == ["delete_role_assignment", "delete_application"]


def test_cleanup_without_assignment(session, fake_azure):
    created = CreatedObjects(application_object_id="app-object-id", service_principal_id="sp-object-id")
    assert cleanup(session, created) is True
    assert fake_azure.called("delete_application") == [{"application_object_id": "app-object-id"}]
    assert fake_azure.called("delete_role_assignment") == []


def test_cleanup_nothing_created(session, fake_azure):
    assert cleanup(session, CreatedObjects()) is False
    assert fake_azure.calls == []


def test_fixed_issuer_and_audience():
    assert GITHUB_OIDC_ISSUER == "https://token.actions.githubusercontent.com"
    assert AZURE_AD_TOKEN_EXCHANGE == "api://AzureADTokenExchange"
