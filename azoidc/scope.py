from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from azoidc import azure_api
from azoidc.auth import AzureSession
from azoidc.prompts import DEFAULT_MAX_ATTEMPTS, InputFn, PromptExhausted, ask, choose
from azoidc.validate import is_valid_resource_group_name


class ScopeKind(enum.Enum):
    MANAGEMENT_GROUP = 1
    SUBSCRIPTION = 2
    RESOURCE_GROUP = 3

    @property
    def title(self) -> str:
        return self.name.replace("_", " ").title()


class ScopeUnavailable(RuntimeError):
    """Nothing of the requested kind is visible to the signed-in identity."""


@dataclass(frozen=True)
class Scope:
    kind: ScopeKind
    scope_id: str
    subscription_id: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def management_group(cls, mg_id: str, label: Optional[str] = None) -> Scope:
        return cls(
            kind=ScopeKind.MANAGEMENT_GROUP,
            scope_id=f"/providers/Microsoft.Management/managementGroups/{mg_id}",
            label=label or mg_id,
        )

    @classmethod
    def subscription(cls, subscription_id: str, label: Optional[str] = None) -> Scope:
        return cls(
            kind=ScopeKind.SUBSCRIPTION,
            scope_id=f"/subscriptions/{subscription_id}",
            subscription_id=subscription_id,
            label=label or subscription_id,
        )

    @classmethod
    def resource_group(cls, subscription_id: str, name: str) -> Scope:
        return cls(
            kind=ScopeKind.RESOURCE_GROUP,
            scope_id=f"/subscriptions/{subscription_id}/resourceGroups/{name}",
            subscription_id=subscription_id,
            label=name,
        )


def _select_subscription(session: AzureSession, *, input_fn: Optional[InputFn], max_attempts: int) -> dict:
    subs = azure_api.list_subscriptions(session=session)
    if not subs:
        raise ScopeUnavailable("No subscriptions are visible to the signed-in identity.")
    # Disabled / Warned / PastDue subscriptions reject new role assignments.
    enabled = [s for s in subs if s.get("state") in (None, "Enabled")]
    if not enabled:
        states = ", ".join(f"{s['display_name']} ({s['state']})" for s in subs)
        raise ScopeUnavailable(f"None of the visible subscriptions is enabled: {states}")
    subs = enabled
    idx = choose(
        "Select a subscription",
        [f"{s['display_name']} ({s['subscription_id']})" for s in subs],
        max_attempts=max_attempts,
        input_fn=input_fn,
    )
    return subs[idx]


def _select_management_group(session: AzureSession, *, input_fn: Optional[InputFn], max_attempts: int) -> Scope:
    groups = azure_api.list_management_groups(session=session)
    if not groups:
        raise ScopeUnavailable("No management groups are visible to the signed-in identity.")
    idx = choose(
        "Select a management group",
        [f"{g['display_name']} ({g['name']})" for g in groups],
        max_attempts=max_attempts,
        input_fn=input_fn,
    )
    return Scope.management_group(groups[idx]["name"], groups[idx]["display_name"])


def _select_resource_group(session: AzureSession, *, input_fn: Optional[InputFn], max_attempts: int) -> Scope:
    sub = _select_subscription(session, input_fn=input_fn, max_attempts=max_attempts)
    sub_id = sub["subscription_id"]
    missing: list[str] = []

    def exists(name: str) -> bool:
        if not is_valid_resource_group_name(name):
            return False
        if azure_api.resource_group_exists(session=session, subscription_id=sub_id, name=name):
            return True
        missing.append(name)
        return False

    try:
        name = ask(
            "Resource group name: ",
            validate=exists,
            error=f"Resource group not found in subscription {sub['display_name']}",
            max_attempts=max_attempts,
            input_fn=input_fn,
        )
    except PromptExhausted as e:
        if missing:
            raise PromptExhausted(f"{e} (not found: {', '.join(missing)})") from None
        raise
    return Scope.resource_group(sub_id, name)


def resolve_scope(
    session: AzureSession,
    *,
    kind: Optional[ScopeKind] = None,
    input_fn: Optional[InputFn] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Scope:
    """
    Walk the operator from "nothing selected" to a concrete ARM scope.

    The returned `Scope.scope_id` can be passed as-is as the scope of a role
    assignment.
    """
    if kind is None:
        kinds = list(ScopeKind)
        idx = choose(
            "Where should the role be assigned",
            [k.title for k in kinds],
            max_attempts=max_attempts,
            input_fn=input_fn,
        )
        kind = kinds[idx]

    if kind is ScopeKind.MANAGEMENT_GROUP:
        return _select_management_group(session, input_fn=input_fn, max_attempts=max_attempts)
    if kind is ScopeKind.SUBSCRIPTION:
        sub = _select_subscription(session, input_fn=input_fn, max_attempts=max_attempts)
        return Scope.subscription(sub["subscription_id"], sub["display_name"])
    if kind is ScopeKind.RESOURCE_GROUP:
        return _select_resource_group(session, input_fn=input_fn, max_attempts=max_attempts)
    raise ValueError(f"Unsupported scope kind: {kind!r}")
