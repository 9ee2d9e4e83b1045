from __future__ import annotations

from typing import TYPE_CHECKING

from termcolor import colored

from azoidc.scope import ScopeKind

if TYPE_CHECKING:
    from azoidc.provision import ProvisionResult


def info(msg: str) -> None:
    print(f"{colored('[*] ', 'blue')}{msg}")


def ok(msg: str) -> None:
    print(f"{colored('[+] ', 'green')}{msg}")


def warn(msg: str) -> None:
    print(f"{colored('[!] ', 'yellow')}{msg}")


def error(msg: str) -> None:
    print(f"{colored('[-] ', 'red')}{msg}")


def section(title: str) -> None:
    print()
    print(colored(title, "yellow", attrs=["bold"]) + ":")


def kv(key: str, value: str) -> None:
    print(f"  {colored(key + ':', 'white')} {value}")


def secret_lines(result: ProvisionResult) -> list[tuple[str, str]]:
    """
    The GitHub secrets `azure/login` needs. A management-group run never
    selected a subscription, so it has no AZURE_SUBSCRIPTION_ID.
    """
    lines = [
        ("AZURE_CLIENT_ID", result.client_id),
        ("AZURE_TENANT_ID", result.tenant_id),
    ]
    if result.scope.kind is not ScopeKind.MANAGEMENT_GROUP and result.subscription_id:
        lines.append(("AZURE_SUBSCRIPTION_ID", result.subscription_id))
    return lines


def print_summary(result: ProvisionResult) -> None:
    section("Provisioned")
    kv("Application (object id)", result.application_object_id)
    kv("Service principal (object id)", result.service_principal_id)
    kv("Role assignment", f"`{result.role_name}` scope=`{result.scope.scope_id}`")
    kv("Federated credential", f"`{result.credential_name}` subject=`{result.subject}`")


def print_secrets(result: ProvisionResult) -> None:
    section("Add these as GitHub Actions secrets")
    for name, value in secret_lines(result):
        print(f"  {colored(name, 'green', attrs=['bold'])}: {value}")

    section("Workflow requirements")
    print("  - permissions: `id-token: write`")
    print("  - login step: `azure/login@v2` with `client-id` and `tenant-id` from the secrets above")
    if result.scope.kind is ScopeKind.MANAGEMENT_GROUP:
        print("  - login step: `allow-no-subscriptions: true` (management group scope has no subscription)")
    else:
        print("  - login step: `subscription-id` from AZURE_SUBSCRIPTION_ID")
    print()
