from __future__ import annotations

from typing import Any

import pytest
from azure.core.credentials import AccessToken

from azoidc import azure_api
from azoidc.auth import AzureSession


SUB_DEV = "11111111-1111-1111-1111-111111111111"
SUB_PROD = "22222222-2222-2222-2222-222222222222"
TENANT_ID = "00000000-0000-0000-0000-0000000000aa"


class Answers:
    """Scripted stand-in for `input()`; runs out with EOFError like a closed stdin."""

    def __init__(self, *answers: str) -> None:
        self._answers = list(answers)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self._answers:
            raise EOFError
        return self._answers.pop(0)

    @property
    def remaining(self) -> int:
        return len(self._answers)


class FakeCredential:
    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        return AccessToken("fake-token", 4102444800)


class FakeAzure:
    """In-memory replacement for the provider calls in `azoidc.azure_api`."""

    API = (
        "list_management_groups",
        "list_subscriptions",
        "resource_group_exists",
        "create_application",
        "create_service_principal",
        "find_role_definition_id",
        "create_role_assignment",
        "create_federated_credential",
        "delete_role_assignment",
        "delete_application",
    )

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        self.management_groups = [
            {
                "id": "/providers/Microsoft.Management/managementGroups/mg-platform",
                "name": "mg-platform",
                "display_name": "Platform",
            },
            {
                "id": "/providers/Microsoft.Management/managementGroups/mg-sandbox",
                "name": "mg-sandbox",
                "display_name": "Sandbox",
            },
        ]
        self.subscriptions = [
            {"subscription_id": SUB_DEV, "display_name": "Dev", "state": "Enabled"},
            {"subscription_id": SUB_PROD, "display_name": "Prod", "state": "Enabled"},
        ]
        self.resource_groups = {SUB_DEV: {"rg-app"}, SUB_PROD: {"rg-prod"}}

    def _call(self, op: str, /, **kwargs: Any) -> None:
        kwargs.pop("session", None)
        self.calls.append((op, kwargs))
        exc = self.failures.get(op)
        if exc is not None:
            raise exc

    def called(self, name: str) -> list[dict[str, Any]]:
        return [kw for n, kw in self.calls if n == name]

    def list_management_groups(self, **kw: Any) -> list[dict[str, Any]]:
        self._call("list_management_groups", **kw)
        return list(self.management_groups)

    def list_subscriptions(self, **kw: Any) -> list[dict[str, Any]]:
        self._call("list_subscriptions", **kw)
        return list(self.subscriptions)

    def resource_group_exists(self, **kw: Any) -> bool:
        self._call("resource_group_exists", **kw)
        return kw["name"] in self.resource_groups.get(kw["subscription_id"], set())

    def create_application(self, **kw: Any) -> dict[str, Any]:
        self._call("create_application", **kw)
        return {"id": "app-object-id", "app_id": "app-client-id", "display_name": kw["display_name"]}

    def create_service_principal(self, **kw: Any) -> dict[str, Any]:
        self._call("create_service_principal", **kw)
        return {"id": "sp-object-id", "app_id": kw["app_id"]}

    def find_role_definition_id(self, **kw: Any) -> str:
        self._call("find_role_definition_id", **kw)
        return f"{kw['scope']}/providers/Microsoft.Authorization/roleDefinitions/role-{kw['role_name'].lower()}"

    def create_role_assignment(self, **kw: Any) -> str:
        self._call("create_role_assignment", **kw)
        return f"{kw['scope']}/providers/Microsoft.Authorization/roleAssignments/ra-1"

    def create_federated_credential(self, **kw: Any) -> dict[str, Any]:
        self._call("create_federated_credential", **kw)
        return {"id": "fic-1", "name": kw["name"], "subject": kw["subject"]}

    def delete_role_assignment(self, **kw: Any) -> None:
        self._call("delete_role_assignment", **kw)

    def delete_application(self, **kw: Any) -> None:
        self._call("delete_application", **kw)


@pytest.fixture(autouse=True)
def _no_color(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("ANSI_COLORS_DISABLED", "1")
    monkeypatch.delenv("FORCE_COLOR", raising=False)


@pytest.fixture
def session() -> AzureSession:
    return AzureSession(
        credential=FakeCredential(),
        tenant_id=TENANT_ID,
        object_id="operator-oid",
        user="admin@contoso.example",
    )


@pytest.fixture
def fake_azure(monkeypatch: pytest.MonkeyPatch) -> FakeAzure:
    fake = FakeAzure()
    for name in FakeAzure.API:
        monkeypatch.setattr(azure_api, name, getattr(fake, name))
    return fake