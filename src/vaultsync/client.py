"""
Vault HTTP client -- the read/write/delete/list/renew primitives.

The client never stores a credential. Every call takes the token to use,
so the owning StoreSession is the only place a token lives and changes.

KV v1 paths are sent as-is. For KV v2 the logical path
``<mount>/<rest>`` is mapped onto the versioned API:

    read / write   ->  <mount>/data/<rest>
    list / delete  ->  <mount>/metadata/<rest>
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .models import TokenInfo

logger = logging.getLogger("vaultsync.client")


class VaultError(Exception):
    """A Vault request failed.

    Attributes:
        status: HTTP status code, or None for transport failures.
        errors: Error strings reported by Vault.
    """

    def __init__(self, message: str, status: Optional[int] = None, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.status = status
        self.errors = errors or []


class VaultAuthError(VaultError):
    """The credential was rejected or has expired."""


class VaultNotFoundError(VaultError):
    """The requested path does not exist."""


class VaultClient:
    """Thin Vault HTTP API client for one cluster.

    Args:
        url: Base address, e.g. ``https://vault.example.com:8200``.
        kv_version: KV secrets engine version of ``mount``.
        mount: KV mount used for v2 path mapping.
        namespace: Optional Vault namespace.
        timeout: Per-request timeout in seconds.
        verify: Verify TLS certificates.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        url: str,
        kv_version: int = 1,
        mount: Optional[str] = None,
        namespace: Optional[str] = None,
        timeout: float = 30.0,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.kv_version = kv_version
        self.mount = (mount or "").strip("/")
        headers = {"X-Vault-Namespace": namespace} if namespace else {}
        self._http = httpx.Client(
            base_url=self.url,
            timeout=timeout,
            verify=verify,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, store) -> "VaultClient":
        """Build a client from a StoreConfig."""
        return cls(
            url=store.url,
            kv_version=store.kv_version,
            mount=store.mount,
            namespace=store.namespace,
            timeout=store.timeout,
            verify=store.verify_tls,
        )

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Optional[dict[str, Any]]:
        """Issue one API call and decode the JSON body.

        Returns:
            Decoded body, or None for an empty response.

        Raises:
            VaultAuthError: On 401/403.
            VaultNotFoundError: On 404.
            VaultError: On any other failure, including transport errors.
        """
        headers = {"X-Vault-Token": token} if token else None
        try:
            response = self._http.request(
                method, f"/v1/{path.lstrip('/')}", headers=headers, json=json, params=params
            )
        except httpx.HTTPError as exc:
            raise VaultError(f"{method} {path}: {exc}") from exc

        if response.status_code >= 400:
            errors = _error_list(response)
            message = f"{method} {path}: HTTP {response.status_code}"
            if errors:
                message += f" ({'; '.join(errors)})"
            if response.status_code in (401, 403):
                raise VaultAuthError(message, response.status_code, errors)
            if response.status_code == 404:
                raise VaultNotFoundError(message, response.status_code, errors)
            raise VaultError(message, response.status_code, errors)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise VaultError(f"{method} {path}: invalid JSON response") from exc

    def _kv_path(self, path: str, api: str) -> str:
        path = path.strip("/")
        if self.kv_version == 1:
            return path
        if path != self.mount and not path.startswith(self.mount + "/"):
            raise VaultError(f"{path} is outside KV v2 mount {self.mount}")
        rest = path[len(self.mount):].lstrip("/")
        return f"{self.mount}/{api}/{rest}".rstrip("/")

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def read(self, path: str, token: str) -> Optional[dict[str, Any]]:
        """Read a secret's key/value payload, or None if it does not exist."""
        try:
            body = self._request("GET", self._kv_path(path, "data"), token)
        except VaultNotFoundError:
            return None
        data = (body or {}).get("data")
        if self.kv_version == 2:
            data = (data or {}).get("data")
        return data

    def write(self, path: str, value: dict[str, Any], token: str) -> None:
        payload = {"data": value} if self.kv_version == 2 else value
        self._request("POST", self._kv_path(path, "data"), token, json=payload)

    def delete(self, path: str, token: str) -> None:
        """Delete a secret. A missing secret is not an error."""
        try:
            self._request("DELETE", self._kv_path(path, "metadata"), token)
        except VaultNotFoundError:
            logger.debug("Delete of missing secret %s ignored", path)

    def list(self, path: str, token: str) -> list[str]:
        """List the children of ``path``; folders end with ``/``."""
        try:
            body = self._request(
                "GET", self._kv_path(path, "metadata"), token, params={"list": "true"}
            )
        except VaultNotFoundError:
            return []
        return list(((body or {}).get("data") or {}).get("keys") or [])

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def lookup_self(self, token: str) -> TokenInfo:
        body = self._request("GET", "auth/token/lookup-self", token) or {}
        data = body.get("data") or {}
        return TokenInfo(ttl=int(data.get("ttl") or 0), renewable=bool(data.get("renewable")))

    def renew_self(self, token: str, increment: Optional[int] = None) -> TokenInfo:
        payload = {"increment": f"{increment}s"} if increment else {}
        body = self._request("POST", "auth/token/renew-self", token, json=payload) or {}
        return _token_info(body)

    def login_approle(self, role_id: str, secret_id: str, mount: str = "approle") -> tuple[str, TokenInfo]:
        """Log in with AppRole credentials.

        Returns:
            (client_token, TokenInfo) tuple.
        """
        body = self._request(
            "POST",
            f"auth/{mount.strip('/')}/login",
            json={"role_id": role_id, "secret_id": secret_id},
        ) or {}
        auth = body.get("auth") or {}
        token = auth.get("client_token")
        if not token:
            raise VaultAuthError(f"AppRole login at {mount} returned no token")
        return token, _token_info(body)

    # ------------------------------------------------------------------
    # Audit devices
    # ------------------------------------------------------------------

    def list_audit_devices(self, token: str) -> dict[str, Any]:
        """Return enabled audit devices keyed by ``<path>/``."""
        body = self._request("GET", "sys/audit", token) or {}
        devices = body.get("data")
        if devices is None:
            # Older servers return the devices at the top level
            devices = {k: v for k, v in body.items() if isinstance(v, dict) and "type" in v}
        return devices

    def enable_audit_device(
        self,
        path: str,
        device_type: str,
        options: dict[str, str],
        token: str,
        description: str = "",
    ) -> None:
        self._request(
            "PUT",
            f"sys/audit/{path.strip('/')}",
            token,
            json={"type": device_type, "options": options, "description": description},
        )

    def disable_audit_device(self, path: str, token: str) -> None:
        self._request("DELETE", f"sys/audit/{path.strip('/')}", token)


def _token_info(body: dict[str, Any]) -> TokenInfo:
    auth = body.get("auth") or {}
    return TokenInfo(ttl=int(auth.get("lease_duration") or 0), renewable=bool(auth.get("renewable")))


def _error_list(response: httpx.Response) -> list[str]:
    try:
        return [str(e) for e in response.json().get("errors") or []]
    except (ValueError, AttributeError):
        return []
