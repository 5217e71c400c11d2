"""
Configuration for the sync engine.

Loaded once from a YAML file before anything connects. Credentials may
come from the environment instead of the file:

    VAULT_SYNC_SRC_TOKEN, VAULT_SYNC_SRC_ROLE_ID, VAULT_SYNC_SRC_SECRET_ID
    VAULT_SYNC_DST_TOKEN, VAULT_SYNC_DST_ROLE_ID, VAULT_SYNC_DST_SECRET_ID

Example vault-sync.yaml:

    id: vault-sync
    full_sync_interval: 3600
    bind: 0.0.0.0:8202
    external_address: vault-sync.example.com:8202
    src:
      url: https://vault-a.example.com:8200
      prefix: secret/app
      auth:
        role_id: ...
        secret_id: ...
    dst:
      url: https://vault-b.example.com:8200
      prefix: secret/app-copy
      auth:
        token: ...
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger("vaultsync.config")

ENV_PREFIX = "VAULT_SYNC"
ENV_AUTH_FIELDS = {"TOKEN": "token", "ROLE_ID": "role_id", "SECRET_ID": "secret_id"}
MASK = "********"


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or validated."""


def parse_address(value: str) -> tuple[str, int]:
    """Split a ``host:port`` string.

    Args:
        value: Address such as ``0.0.0.0:8202``.

    Returns:
        (host, port) tuple.

    Raises:
        ValueError: If the port is missing or not a valid number.
    """
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got '{value}'")
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in '{value}'") from None
    if not 0 <= number <= 65535:
        raise ValueError(f"port out of range in '{value}'")
    return host.strip("[]"), number


class AuthConfig(BaseModel):
    """How a store connection authenticates: a token or an AppRole."""

    token: Optional[str] = None
    role_id: Optional[str] = None
    secret_id: Optional[str] = None
    approle_mount: str = "approle"

    @model_validator(mode="after")
    def exactly_one_method(self) -> "AuthConfig":
        approle = self.role_id is not None or self.secret_id is not None
        if approle and (self.role_id is None or self.secret_id is None):
            raise ValueError("AppRole auth needs both role_id and secret_id")
        if approle and self.token:
            raise ValueError("set either token or role_id/secret_id, not both")
        if not approle and not self.token:
            raise ValueError("no credentials: set token or role_id/secret_id")
        return self

    @property
    def uses_approle(self) -> bool:
        return self.role_id is not None


class StoreConfig(BaseModel):
    """Connection parameters and watched prefix for one Vault."""

    url: str
    prefix: str
    kv_version: int = Field(default=1, description="KV secrets engine version (1 or 2)")
    mount: Optional[str] = Field(default=None, description="KV mount; defaults to the prefix's first segment")
    namespace: Optional[str] = None
    timeout: float = 30.0
    verify_tls: bool = True
    renew_fraction: float = Field(default=0.5, description="Renew after this share of the remaining TTL")
    min_renew_interval: float = 5.0
    auth: AuthConfig

    @field_validator("prefix")
    @classmethod
    def prefix_must_be_clean(cls, v: str) -> str:
        """Strip surrounding slashes and reject an empty prefix."""
        v = v.strip().strip("/")
        if not v:
            raise ValueError("prefix must not be empty")
        return v

    @field_validator("kv_version")
    @classmethod
    def kv_version_supported(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError(f"kv_version must be 1 or 2: got {v}")
        return v

    @field_validator("renew_fraction")
    @classmethod
    def fraction_in_range(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError(f"renew_fraction must be between 0 and 1: got {v}")
        return v

    @model_validator(mode="after")
    def default_mount(self) -> "StoreConfig":
        if self.mount is None:
            self.mount = self.prefix.split("/", 1)[0]
        else:
            self.mount = self.mount.strip("/")
        if self.prefix != self.mount and not self.prefix.startswith(self.mount + "/"):
            raise ValueError(f"prefix '{self.prefix}' is not under mount '{self.mount}'")
        return self


class SyncConfig(BaseModel):
    """Complete configuration for one replication pair."""

    id: str = Field(default="vault-sync", description="Audit device name registered on the source")
    full_sync_interval: int = Field(default=3600, description="Seconds between reconciliation scans")
    bind: str = "0.0.0.0:8202"
    external_address: str
    dry_run: bool = False
    src: StoreConfig
    dst: StoreConfig

    @field_validator("id")
    @classmethod
    def id_must_be_clean(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("id must not be empty")
        return v

    @field_validator("full_sync_interval")
    @classmethod
    def interval_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("full_sync_interval must be positive")
        return v

    @field_validator("bind", "external_address")
    @classmethod
    def address_parses(cls, v: str) -> str:
        parse_address(v)
        return v

    @property
    def bind_address(self) -> tuple[str, int]:
        return parse_address(self.bind)

    def redacted(self) -> dict[str, Any]:
        """Return the configuration as a dict with credentials masked."""
        data = self.model_dump(mode="json")
        for side in ("src", "dst"):
            auth = data[side]["auth"]
            for key in ("token", "secret_id"):
                if auth.get(key):
                    auth[key] = MASK
        return data


def _apply_env(data: dict[str, Any], environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Overlay credentials from VAULT_SYNC_* environment variables."""
    environ = os.environ if environ is None else environ
    for side in ("src", "dst"):
        overrides = {
            field: environ[f"{ENV_PREFIX}_{side.upper()}_{suffix}"]
            for suffix, field in ENV_AUTH_FIELDS.items()
            if environ.get(f"{ENV_PREFIX}_{side.upper()}_{suffix}")
        }
        if not overrides:
            continue
        store = data.setdefault(side, {}) or {}
        data[side] = store
        auth = store.get("auth") or {}
        if "token" in overrides:
            auth.pop("role_id", None)
            auth.pop("secret_id", None)
        elif "role_id" in overrides or "secret_id" in overrides:
            auth.pop("token", None)
        auth.update(overrides)
        store["auth"] = auth
    return data


def load_config(path: Union[str, Path], environ: Optional[dict[str, str]] = None) -> SyncConfig:
    """Load and validate the sync configuration.

    Args:
        path: YAML configuration file.
        environ: Environment used for credential overrides. Defaults to os.environ.

    Returns:
        Validated SyncConfig.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.
    """
    config_file = Path(path).expanduser()
    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read {config_file}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file}: expected a mapping at the top level")

    try:
        config = SyncConfig(**_apply_env(data, environ))
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_file}:\n{exc}") from exc

    logger.debug("Loaded configuration from %s", config_file)
    return config
