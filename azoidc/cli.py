from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

import requests
from azure.core.exceptions import AzureError

from azoidc import output
from azoidc.auth import AUTH_METHODS, AzureSession, open_session
from azoidc.azure_api import AuthorizationFailed, ProviderError
from azoidc.prompts import (
    CANCEL_SENTINEL,
    DEFAULT_MAX_ATTEMPTS,
    InputFn,
    PromptCancelled,
    PromptExhausted,
    ask,
    choose,
    confirm,
)
from azoidc.provision import CreatedObjects, ProvisioningFailed, ProvisionRequest, cleanup, provision
from azoidc.scope import Scope, ScopeKind, ScopeUnavailable, resolve_scope
from azoidc.validate import (
    build_subject,
    default_credential_name,
    is_valid_branch_name,
    is_valid_credential_name,
    is_valid_org_name,
    is_valid_repo_name,
)
from azoidc.workflow import render_workflow, write_workflow


ROLE_CHOICES = ["Contributor", "Reader", "Owner"]
OTHER_ROLE = "Other (enter a role name)"
SCOPE_KIND_ARGS = {
    "management-group": ScopeKind.MANAGEMENT_GROUP,
    "subscription": ScopeKind.SUBSCRIPTION,
    "resource-group": ScopeKind.RESOURCE_GROUP,
}
MAX_DISPLAY_NAME = 120

EXIT_OK = 0
EXIT_FAILED = 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description=(
            "Create an Entra ID application, service principal, role assignment and federated credential "
            "so a GitHub Actions workflow can log in to Azure with OpenID Connect (no stored secret)."
        )
    )
    gh = ap.add_argument_group("GitHub")
    gh.add_argument("--org", help="GitHub organization or user name (prompted when omitted).")
    gh.add_argument("--repo", help="GitHub repository name (prompted when omitted).")
    gh.add_argument("--branch", help="Branch allowed to log in (prompted when omitted).")
    gh.add_argument("--yes", action="store_true", help="Do not ask to confirm the subject claim.")

    az = ap.add_argument_group("Azure")
    az.add_argument("--scope-kind", choices=sorted(SCOPE_KIND_ARGS), help="Where to assign the role (prompted when omitted).")
    az.add_argument("--display-name", help="Display name for the new application / service principal.")
    az.add_argument("--role", help="Role to assign, e.g. Contributor (prompted when omitted).")
    az.add_argument("--credential-name", help="Federated credential name (default: derived from repo and branch).")
    az.add_argument(
        "--cleanup-on-failure",
        choices=["ask", "always", "never"],
        default="ask",
        help="What to do with objects created before a failure (default: ask).",
    )

    auth = ap.add_argument_group("Authentication (no az CLI)")
    auth.add_argument(
        "--auth-method",
        default="auto",
        choices=AUTH_METHODS,
        help="Authentication method (default: auto).",
    )
    auth.add_argument("--tenant-id", help="Tenant ID (env: AZURE_TENANT_ID).")
    auth.add_argument("--client-id", help="Client ID for client-secret auth (env: AZURE_CLIENT_ID).")
    auth.add_argument("--client-secret", help="Client secret for client-secret auth (env: AZURE_CLIENT_SECRET).")
    auth.add_argument("--arm-token", help="Azure Resource Manager access token (Bearer). Bypasses other auth methods.")
    auth.add_argument("--graph-token", help="Microsoft Graph access token (Bearer). Required with --arm-token.")
    auth.add_argument("--device-client-id", help="Public client ID for device-code auth (default: Azure CLI public app id).")
    auth.add_argument(
        "--no-az-token-cache",
        action="store_true",
        help="Do not read tokens from ~/.azure/msal_token_cache.json.",
    )

    ap.add_argument(
        "--max-attempts",
        type=int,
        default=DEFAULT_MAX_ATTEMPTS,
        help=f"Invalid answers allowed per prompt before giving up (default: {DEFAULT_MAX_ATTEMPTS}).",
    )
    ap.add_argument("--write-workflow", metavar="PATH", help="Also write a GitHub Actions test workflow to PATH.")
    return ap


def _check_presets(ap: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    checks = (
        ("--org", args.org, is_valid_org_name),
        ("--repo", args.repo, is_valid_repo_name),
        ("--branch", args.branch, is_valid_branch_name),
        ("--credential-name", args.credential_name, is_valid_credential_name),
    )
    for flag, value, check in checks:
        if value is not None and not check(value):
            ap.error(f"invalid value for {flag}: {value!r}")
    if args.display_name is not None and not (0 < len(args.display_name.strip()) <= MAX_DISPLAY_NAME):
        ap.error(f"--display-name must be 1-{MAX_DISPLAY_NAME} characters")
    if args.role is not None and not args.role.strip():
        ap.error("--role must not be empty")
    if args.max_attempts < 1:
        ap.error("--max-attempts must be at least 1")


def _ask_identifiers(args: argparse.Namespace, input_fn: Optional[InputFn]) -> tuple[str, str, str]:
    org = args.org or ask(
        "GitHub organization or user name: ",
        validate=is_valid_org_name,
        error="Use 1-39 letters, digits or single hyphens, not starting or ending with a hyphen",
        max_attempts=args.max_attempts,
        input_fn=input_fn,
    )
    repo = args.repo or ask(
        "Repository name: ",
        validate=is_valid_repo_name,
        error="Use 1-100 letters, digits, '.', '_' or '-', starting and ending with a letter or digit",
        max_attempts=args.max_attempts,
        input_fn=input_fn,
    )
    branch = args.branch or ask(
        "Branch name: ",
        validate=is_valid_branch_name,
        error="Use 1-255 letters, digits, '.', '_', '-' or '/', without a leading/trailing '/' or '//'",
        max_attempts=args.max_attempts,
        input_fn=input_fn,
    )
    return org, repo, branch


def _ask_display_name(args: argparse.Namespace, repo: str, input_fn: Optional[InputFn]) -> str:
    if args.display_name:
        return args.display_name.strip()
    default = f"github-actions-{repo}"[:MAX_DISPLAY_NAME]
    value = ask(
        f"Service principal display name [{default}]: ",
        validate=lambda s: len(s) <= MAX_DISPLAY_NAME,
        error=f"Use at most {MAX_DISPLAY_NAME} characters",
        max_attempts=args.max_attempts,
        input_fn=input_fn,
    )
    return value or default


def _ask_role(args: argparse.Namespace, input_fn: Optional[InputFn]) -> str:
    if args.role:
        return args.role.strip()
    idx = choose("Role to assign", ROLE_CHOICES + [OTHER_ROLE], max_attempts=args.max_attempts, input_fn=input_fn)
    if idx < len(ROLE_CHOICES):
        return ROLE_CHOICES[idx]
    return ask(
        "Role name: ",
        validate=bool,
        error="Role name is required",
        max_attempts=args.max_attempts,
        input_fn=input_fn,
    )


ARM_STEPS = ("resolve_role", "create_role_assignment")


def _report_failure(failure: ProvisioningFailed, scope: Scope) -> None:
    if not isinstance(failure.cause, AuthorizationFailed):
        output.error(f"Provisioning failed during {failure.step}: {failure.cause}")
        return
    if failure.step in ARM_STEPS:
        output.error(f"Not authorized during {failure.step} at {scope.kind.title.lower()} `{scope.label}`.")
        output.error(
            "Check Access control (IAM) on that scope: assigning roles needs Owner, "
            "User Access Administrator or Role Based Access Control Administrator."
        )
    else:
        # Graph calls: directory roles, not ARM RBAC.
        output.error(f"Microsoft Graph refused {failure.step}.")
        output.error(
            "Creating applications needs an Entra ID directory role such as Application Developer, "
            "Application Administrator or Cloud Application Administrator "
            "(or 'Users can register applications' enabled for the tenant)."
        )


def _handle_leftovers(
    session: AzureSession,
    created: CreatedObjects,
    *,
    policy: str,
    input_fn: Optional[InputFn],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> None:
    if not created:
        return
    output.section("Objects created before the failure")
    output.kv("Application (object id)", created.application_object_id or "-")
    output.kv("Client id", created.client_id or "-")
    if created.service_principal_id:
        output.kv("Service principal (object id)", created.service_principal_id)
    if created.role_assignment_id:
        output.kv("Role assignment", created.role_assignment_id)

    if policy == "never":
        output.warn("Leaving them in place (--cleanup-on-failure never).")
        return
    if policy == "ask":
        try:
            if not confirm("Delete them now? [y/N]: ", default=False, max_attempts=max_attempts, input_fn=input_fn):
                output.warn("Leaving them in place.")
                return
        except (PromptCancelled, PromptExhausted):
            output.warn("Leaving them in place.")
            return
    try:
        cleanup(session, created)
        output.ok("Deleted the objects created in this run.")
    except (ProviderError, AzureError, requests.RequestException) as e:
        output.error(f"Cleanup failed, delete application {created.application_object_id} manually: {e}")


def _run(args: argparse.Namespace, input_fn: Optional[InputFn]) -> int:
    print(f"Answer '{CANCEL_SENTINEL}' at any prompt to cancel.")
    output.section("GitHub repository")
    org, repo, branch = _ask_identifiers(args, input_fn)
    subject = build_subject(org, repo, branch)
    output.kv("Subject", subject)
    if not args.yes and not confirm(
        "Is this subject correct? [y/N]: ", default=False, max_attempts=args.max_attempts, input_fn=input_fn
    ):
        output.error("Subject not confirmed, nothing was created.")
        return EXIT_FAILED
    credential_name = args.credential_name or default_credential_name(repo, branch)

    output.section("Azure")
    try:
        session = open_session(args)
    except Exception as e:
        output.error(f"Azure authentication failed: {e}")
        return EXIT_FAILED
    output.ok(f"Signed in as {session.user or session.object_id or 'unknown'} (tenant {session.tenant_id})")

    kind = SCOPE_KIND_ARGS[args.scope_kind] if args.scope_kind else None
    try:
        scope = resolve_scope(session, kind=kind, input_fn=input_fn, max_attempts=args.max_attempts)
    except (ScopeUnavailable, ProviderError, AzureError, requests.RequestException) as e:
        output.error(f"Could not resolve the scope: {e}")
        return EXIT_FAILED
    output.kv("Scope", f"{scope.kind.title} `{scope.label}` ({scope.scope_id})")

    display_name = _ask_display_name(args, repo, input_fn)
    role_name = _ask_role(args, input_fn)

    request = ProvisionRequest(
        display_name=display_name,
        role_name=role_name,
        scope=scope,
        subject=subject,
        credential_name=credential_name,
    )
    output.section("Provisioning")
    try:
        result = provision(session, request, stage_cb=lambda step: output.info(step.replace("_", " ")))
    except ProvisioningFailed as failure:
        _report_failure(failure, scope)
        _handle_leftovers(
            session,
            failure.created,
            policy=args.cleanup_on_failure,
            input_fn=input_fn,
            max_attempts=args.max_attempts,
        )
        return EXIT_FAILED
    output.ok("Done.")

    output.print_summary(result)
    output.print_secrets(result)

    if args.write_workflow:
        try:
            write_workflow(args.write_workflow, render_workflow(scope.kind))
        except OSError as e:
            output.error(f"Could not write the workflow to {args.write_workflow}: {e}")
            return EXIT_FAILED
        output.ok(f"Wrote workflow to {args.write_workflow}")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None, *, input_fn: Optional[InputFn] = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)
    _check_presets(ap, args)

    try:
        code = _run(args, input_fn)
    except PromptCancelled:
        print()
        output.error("Cancelled by operator.")
        code = EXIT_FAILED
    except PromptExhausted as e:
        output.error(str(e))
        code = EXIT_FAILED
    sys.exit(code)


if __name__ == "__main__":
    main()
