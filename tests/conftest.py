"""Shared test fixtures for vaultsync."""

from __future__ import annotations

import copy
import threading
import time
from pathlib import Path
from typing import Any, Optional

import pytest
import yaml

from vaultsync.client import VaultError
from vaultsync.config import AuthConfig, SyncConfig
from vaultsync.models import TokenInfo
from vaultsync.session import StoreSession


class FakeVaultClient:
    """In-memory stand-in for VaultClient.

    Secrets are stored by logical path. Operations named in ``fail`` raise
    a VaultError; every call is recorded in ``calls``.
    """

    def __init__(
        self,
        url: str = "http://vault.test:8200",
        secrets: Optional[dict[str, dict]] = None,
        ttl: int = 0,
        renewable: bool = False,
    ):
        self.url = url
        self.secrets: dict[str, dict[str, Any]] = dict(secrets or {})
        self.devices: dict[str, dict[str, Any]] = {}
        self.ttl = ttl
        self.renewable = renewable
        self.fail: set[str] = set()
        self.calls: list[tuple] = []
        self.logins = 0
        self.closed = False
        self._lock = threading.Lock()

    def _call(self, op: str, *args) -> None:
        with self._lock:
            self.calls.append((op,) + args)
        if op in self.fail:
            raise VaultError(f"{op} failed", status=500)

    def ops(self, *names: str) -> list[tuple]:
        with self._lock:
            return [c for c in self.calls if c[0] in names]

    def read(self, path, token):
        self._call("read", path)
        value = self.secrets.get(path)
        return copy.deepcopy(value) if value is not None else None

    def write(self, path, value, token):
        self._call("write", path, copy.deepcopy(value))
        self.secrets[path] = copy.deepcopy(value)

    def delete(self, path, token):
        self._call("delete", path)
        self.secrets.pop(path, None)

    def list(self, path, token):
        self._call("list", path)
        base = path.rstrip("/") + "/"
        children = set()
        for key in self.secrets:
            if key.startswith(base):
                head, sep, _ = key[len(base):].partition("/")
                children.add(head + ("/" if sep else ""))
        return sorted(children)

    def lookup_self(self, token):
        self._call("lookup_self")
        return TokenInfo(ttl=self.ttl, renewable=self.renewable)

    def renew_self(self, token, increment=None):
        self._call("renew_self")
        return TokenInfo(ttl=self.ttl, renewable=self.renewable)

    def login_approle(self, role_id, secret_id, mount="approle"):
        self._call("login_approle", role_id)
        self.logins += 1
        return f"approle-token-{self.logins}", TokenInfo(ttl=self.ttl, renewable=self.renewable)

    def list_audit_devices(self, token):
        self._call("list_audit_devices")
        return {f"{path}/": dict(device) for path, device in self.devices.items()}

    def enable_audit_device(self, path, device_type, options, token, description=""):
        self._call("enable_audit_device", path)
        if path in self.devices:
            raise VaultError(f"path already in use at {path}/", status=400)
        self.devices[path] = {"type": device_type, "options": dict(options), "description": description}

    def disable_audit_device(self, path, token):
        self._call("disable_audit_device", path)
        self.devices.pop(path, None)

    def close(self):
        self.closed = True


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_session(client: FakeVaultClient, name: str = "src", **kwargs) -> StoreSession:
    """Build and log in a token-authenticated session over ``client``."""
    session = StoreSession(name, client, AuthConfig(token=f"{name}-token"), **kwargs)
    session.login()
    return session


@pytest.fixture
def src_client() -> FakeVaultClient:
    return FakeVaultClient(url="http://vault-a.test:8200")


@pytest.fixture
def dst_client() -> FakeVaultClient:
    return FakeVaultClient(url="http://vault-b.test:8200")


@pytest.fixture
def src_session(src_client) -> StoreSession:
    return make_session(src_client, "src")


@pytest.fixture
def dst_session(dst_client) -> StoreSession:
    return make_session(dst_client, "dst")


@pytest.fixture
def config_data() -> dict:
    """A valid raw configuration mapping."""
    return {
        "id": "vault-sync",
        "full_sync_interval": 3600,
        "bind": "127.0.0.1:0",
        "external_address": "vault-sync.test:8202",
        "src": {
            "url": "http://vault-a.test:8200",
            "prefix": "secret/app",
            "auth": {"token": "src-token"},
        },
        "dst": {
            "url": "http://vault-b.test:8200",
            "prefix": "secret/app-copy",
            "auth": {"token": "dst-token"},
        },
    }


@pytest.fixture
def sync_config(config_data) -> SyncConfig:
    return SyncConfig(**config_data)


@pytest.fixture
def config_file(tmp_path: Path, config_data) -> Path:
    path = tmp_path / "vault-sync.yaml"
    path.write_text(yaml.dump(config_data, default_flow_style=False))
    return path
