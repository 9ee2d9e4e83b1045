from __future__ import annotations

import base64
import json
import os
import time
from dataclasses import dataclass
from typing import Any, Optional

import msal
from azure.core.credentials import AccessToken, TokenCredential
from azure.identity import ClientSecretCredential, DeviceCodeCredential


AZURE_CLI_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"  # Azure CLI public client
ARM_SCOPE = "https://management.azure.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
AUTH_METHODS = ("auto", "client-secret", "device-code", "az-cache")


class AzureCliCacheCredential:
    """
    Token credential backed by the MSAL cache that `az login` leaves in
    ~/.azure/msal_token_cache.json. The cache is read once; `az` itself is
    never executed.

    When a tenant is given, a cached account whose home tenant matches it is
    preferred over the first account in the cache.
    """

    def __init__(
        self,
        *,
        cache_path: Optional[str] = None,
        tenant_id: Optional[str] = None,
        client_id: str = AZURE_CLI_CLIENT_ID,
    ) -> None:
        self.cache_path = cache_path or os.path.expanduser("~/.azure/msal_token_cache.json")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client: Optional[msal.PublicClientApplication] = None

    def _public_client(self) -> msal.PublicClientApplication:
        if self._client is None:
            if not os.path.isfile(self.cache_path):
                raise RuntimeError(f"Azure CLI token cache not found at {self.cache_path}")
            cache = msal.SerializableTokenCache()
            with open(self.cache_path, "r", encoding="utf-8") as f:
                cache.deserialize(f.read())
            self._client = msal.PublicClientApplication(
                client_id=self.client_id,
                authority=f"https://login.microsoftonline.com/{self.tenant_id or 'organizations'}",
                token_cache=cache,
            )
        return self._client

    def _account(self, client: msal.PublicClientApplication) -> dict[str, Any]:
        accounts = client.get_accounts()
        if not accounts:
            raise RuntimeError("The Azure CLI token cache has no signed-in account. Run `az login` or pick another --auth-method.")
        for account in accounts:
            if self.tenant_id and account.get("realm") == self.tenant_id:
                return account
        return accounts[0]

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        client = self._public_client()
        result = client.acquire_token_silent(list(scopes), account=self._account(client))
        if not result or "access_token" not in result:
            raise RuntimeError(f"Silent token refresh from the Azure CLI cache failed: {result}")
        return AccessToken(result["access_token"], int(result.get("expires_on") or 0))


class StaticTokenCredential:
    """Serves bearer tokens obtained elsewhere: `--arm-token` and `--graph-token`."""

    def __init__(self, *, arm_token: str, graph_token: Optional[str] = None) -> None:
        self.tokens = {
            "arm": (arm_token or "").strip(),
            "graph": (graph_token or "").strip(),
        }

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        resource = "graph" if any(s.startswith("https://graph.microsoft.com") for s in scopes) else "arm"
        token = self.tokens[resource]
        if not token:
            raise ValueError(f"No {resource} token was supplied. Pass --graph-token together with --arm-token.")
        exp = jwt_claims(token).get("exp")
        return AccessToken(token, int(exp) if exp else int(time.time()) + 300)


def jwt_claims(token: str) -> dict[str, Any]:
    """Payload of a JWT access token. The signature is not checked."""
    segments = token.split(".")
    if len(segments) != 3:
        return {}
    payload = segments[1]
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    except ValueError:
        # binascii.Error, UnicodeDecodeError and JSONDecodeError are all ValueErrors.
        return {}
    return claims if isinstance(claims, dict) else {}


@dataclass
class AzureSession:
    credential: TokenCredential
    tenant_id: str
    object_id: Optional[str] = None
    user: Optional[str] = None

    def token(self, scope: str) -> str:
        return self.credential.get_token(scope).token


def build_credential(args) -> Any:
    auth_method = (getattr(args, "auth_method", None) or "auto").strip().lower()
    if auth_method not in AUTH_METHODS:
        raise ValueError(f"Invalid --auth-method. Use one of: {', '.join(AUTH_METHODS)}")

    if getattr(args, "arm_token", None):
        return StaticTokenCredential(arm_token=args.arm_token, graph_token=getattr(args, "graph_token", None))

    tenant_id = getattr(args, "tenant_id", None) or os.getenv("AZURE_TENANT_ID")
    client_id = getattr(args, "client_id", None) or os.getenv("AZURE_CLIENT_ID")
    client_secret = getattr(args, "client_secret", None) or os.getenv("AZURE_CLIENT_SECRET")
    if auth_method in ("auto", "client-secret") and tenant_id and client_id and client_secret:
        return ClientSecretCredential(tenant_id=tenant_id, client_id=client_id, client_secret=client_secret)
    if auth_method == "client-secret":
        raise ValueError("client-secret auth selected but missing --tenant-id/--client-id/--client-secret (or env vars).")

    if auth_method in ("auto", "az-cache") and not getattr(args, "no_az_token_cache", False):
        cli_cred = AzureCliCacheCredential(tenant_id=tenant_id)
        try:
            cli_cred.get_token(ARM_SCOPE)
            return cli_cred
        except Exception:
            if auth_method == "az-cache":
                raise
    if auth_method == "az-cache":
        raise ValueError("az-cache auth selected but --no-az-token-cache was given.")

    def prompt_callback(verification_uri: str, user_code: str, expires_on: Any) -> None:
        print(f"To sign in, open {verification_uri} and enter the code {user_code}")

    return DeviceCodeCredential(
        tenant_id=tenant_id or "organizations",
        client_id=getattr(args, "device_client_id", None) or AZURE_CLI_CLIENT_ID,
        prompt_callback=prompt_callback,
    )


def open_session(args) -> AzureSession:
    """
    Build the credential and acquire an ARM token right away so a broken
    login fails before any prompt that follows it.
    """
    credential = build_credential(args)
    claims = jwt_claims(credential.get_token(ARM_SCOPE).token)
    tenant_id = claims.get("tid") or getattr(args, "tenant_id", None) or os.getenv("AZURE_TENANT_ID")
    if not tenant_id:
        raise RuntimeError("Could not determine the tenant id from the access token; pass --tenant-id.")
    return AzureSession(
        credential=credential,
        tenant_id=tenant_id,
        object_id=claims.get("oid") or claims.get("http://schemas.microsoft.com/identity/claims/objectidentifier"),
        user=claims.get("upn") or claims.get("preferred_username") or claims.get("appid"),
    )
