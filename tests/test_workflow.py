from __future__ import annotations

import pytest
import yaml

from azoidc import workflow
from azoidc.scope import ScopeKind
from azoidc.workflow import render_workflow, write_workflow


def _login_step(text: str) -> dict:
    data = yaml.safe_load(text)
    steps = data["jobs"]["test"]["steps"]
    return next(s for s in steps if s["uses"] == "azure/login@v2")


def test_subscription_workflow_uses_subscription_secret():
    text = render_workflow(ScopeKind.SUBSCRIPTION)
    data = yaml.safe_load(text)
    assert data["permissions"]["id-token"] == "write"
    assert "workflow_dispatch" in data["on"]
    login = _login_step(text)["with"]
    assert login["client-id"] == "${{ secrets.AZURE_CLIENT_ID }}"
    assert login["tenant-id"] == "${{ secrets.AZURE_TENANT_ID }}"
    assert login["subscription-id"] == "${{ secrets.AZURE_SUBSCRIPTION_ID }}"
    assert "allow-no-subscriptions" not in login


def test_management_group_workflow_allows_no_subscription():
    login = _login_step(render_workflow(ScopeKind.MANAGEMENT_GROUP))["with"]
    assert login["allow-no-subscriptions"] is True
    assert "subscription-id" not in login


def test_write_workflow_creates_directories(tmp_path):
    path = tmp_path / ".github" / "workflows" / "oidc-test.yml"
    write_workflow(str(path), render_workflow(ScopeKind.RESOURCE_GROUP))
    assert path.exists()
    assert not (tmp_path / ".github" / "workflows" / "oidc-test.yml.tmp").exists()
    assert _login_step(path.read_text("utf-8"))["with"]["subscription-id"]


def test_failed_write_leaves_no_temp_file(tmp_path, monkeypatch):
    def refuse(src, dst):
        raise PermissionError(13, "Permission denied", dst)

    monkeypatch.setattr(workflow.os, "replace", refuse)
    path = tmp_path / "oidc-test.yml"
    with pytest.raises(OSError):
        write_workflow(str(path), render_workflow(ScopeKind.SUBSCRIPTION))
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []
