from __future__ import annotations

import os
from typing import Any

import yaml

from azoidc.scope import ScopeKind


DEFAULT_WORKFLOW_NAME = "Run Azure Login with OpenID Connect"


def build_workflow(scope_kind: ScopeKind, *, name: str = DEFAULT_WORKFLOW_NAME) -> dict[str, Any]:
    login: dict[str, Any] = {
        "client-id": "${{ secrets.AZURE_CLIENT_ID }}",
        "tenant-id": "${{ secrets.AZURE_TENANT_ID }}",
    }
    if scope_kind is ScopeKind.MANAGEMENT_GROUP:
        login["allow-no-subscriptions"] = True
    else:
        login["subscription-id"] = "${{ secrets.AZURE_SUBSCRIPTION_ID }}"

    return {
        "name": name,
        "on": {"workflow_dispatch": {}},
        "permissions": {
            "id-token": "write",
            "contents": "read",
        },
        "jobs": {
            "test": {
                "runs-on": "ubuntu-latest",
                "steps": [
                    {"name": "Azure Login", "uses": "azure/login@v2", "with": login},
                    {
                        "name": "Azure CLI script",
                        "uses": "azure/cli@v2",
                        "with": {"azcliversion": "latest", "inlineScript": "az account show"},
                    },
                ],
            }
        },
    }


def render_workflow(scope_kind: ScopeKind, *, name: str = DEFAULT_WORKFLOW_NAME) -> str:
    """GitHub Actions workflow that logs in with the new federated credential."""
    return yaml.safe_dump(build_workflow(scope_kind, name=name), sort_keys=False, default_flow_style=False)


def write_workflow(path: str, text: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
