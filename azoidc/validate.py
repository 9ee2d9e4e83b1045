from __future__ import annotations

import re
from typing import Any


# GitHub user/org: 1-39 chars, alnum and single inner hyphens.
ORG_NAME_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9]|-(?=[A-Za-z0-9])){0,38}")

# Repository: 1-100 chars, alnum plus . _ - (not at either end).
REPO_NAME_RE = re.compile(r"(?=.{1,100}\Z)[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?")

# Branch: 1-255 chars, alnum plus . _ - /, no leading/trailing "/" and no "//".
BRANCH_NAME_RE = re.compile(r"(?=.{1,255}\Z)(?!/)(?!.*//)(?!.*/\Z)[A-Za-z0-9._/-]+")

# Azure resource group: 1-90 chars, must not end with a period.
RESOURCE_GROUP_NAME_RE = re.compile(r"(?=.{1,90}\Z)[\w().-]*[\w()-]")

# Federated identity credential names (Microsoft Graph).
CREDENTIAL_NAME_RE = re.compile(r"(?=.{1,120}\Z)[A-Za-z0-9_][A-Za-z0-9_-]*")

SUBJECT_TEMPLATE = "repo:{org}/{repo}:ref:refs/heads/{branch}"


def _fullmatch(pattern: re.Pattern[str], value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return pattern.fullmatch(value) is not None


def is_valid_org_name(value: Any) -> bool:
    return _fullmatch(ORG_NAME_RE, value)


def is_valid_repo_name(value: Any) -> bool:
    return _fullmatch(REPO_NAME_RE, value)


def is_valid_branch_name(value: Any) -> bool:
    return _fullmatch(BRANCH_NAME_RE, value)


def is_valid_resource_group_name(value: Any) -> bool:
    return _fullmatch(RESOURCE_GROUP_NAME_RE, value)


def is_valid_credential_name(value: Any) -> bool:
    return _fullmatch(CREDENTIAL_NAME_RE, value)


def build_subject(org: str, repo: str, branch: str) -> str:
    """
    Compose the GitHub OIDC subject claim for pushes to a branch, e.g.
    `repo:octo-org/octo-repo:ref:refs/heads/main`.
    """
    for field, value, check in (
        ("organization", org, is_valid_org_name),
        ("repository", repo, is_valid_repo_name),
        ("branch", branch, is_valid_branch_name),
    ):
        if not check(value):
            raise ValueError(f"Invalid {field} name: {value!r}")
    return SUBJECT_TEMPLATE.format(org=org, repo=repo, branch=branch)


def default_credential_name(repo: str, branch: str) -> str:
    raw = f"{repo}-{branch}"
    name = re.sub(r"[^A-Za-z0-9_-]", "-", raw)
    name = re.sub(r"-{2,}", "-", name).lstrip("-")
    return name[:120] or "github-actions"
