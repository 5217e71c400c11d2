"""
Store sessions -- one authenticated, self-renewing handle per Vault.

A StoreSession owns the token for its store. Callers never see or set
the token; they call read/write/delete/list on the session, which takes
a consistent snapshot of the credential under the lock and then talks
to Vault without holding it. Renewal does its network round trip first
and only swaps the new credential in under the lock.

The SessionManager runs one renewal thread per store for the lifetime
of the process.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .client import VaultAuthError, VaultClient, VaultError
from .config import AuthConfig
from .models import SyncStats, TokenInfo

logger = logging.getLogger("vaultsync.session")


class StoreSession:
    """Authenticated connection to one store.

    Args:
        name: Label used in logs ("src" / "dst").
        client: Vault client for the store.
        auth: Credentials used to log in (and to log in again).
        renew_fraction: Share of the remaining TTL to wait before renewing.
        min_renew_interval: Lower bound for the renewal delay in seconds.
    """

    def __init__(
        self,
        name: str,
        client: VaultClient,
        auth: AuthConfig,
        renew_fraction: float = 0.5,
        min_renew_interval: float = 5.0,
    ):
        self.name = name
        self.client = client
        self.auth = auth
        self.renew_fraction = renew_fraction
        self.min_renew_interval = min_renew_interval
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._renewable: bool = False

    @property
    def address(self) -> str:
        return self.client.url

    @property
    def expires_at(self) -> Optional[datetime]:
        with self._lock:
            return self._expires_at

    @property
    def renewable(self) -> bool:
        with self._lock:
            return self._renewable

    @property
    def authenticated(self) -> bool:
        with self._lock:
            return self._token is not None

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    def login(self) -> None:
        """Authenticate and learn the token's lifetime.

        Raises:
            VaultError: If login or the token lookup fails.
        """
        if self.auth.uses_approle:
            token, _ = self.client.login_approle(
                self.auth.role_id, self.auth.secret_id, self.auth.approle_mount
            )
            logger.info("[%s] Logged in to %s with AppRole", self.name, self.address)
        else:
            token = self.auth.token
        info = self.client.lookup_self(token)
        self._store(token, info)
        if info.ttl:
            logger.info(
                "[%s] Token TTL %ds (renewable: %s)", self.name, info.ttl, info.renewable
            )
        else:
            logger.info("[%s] Token does not expire", self.name)

    def renew(self) -> bool:
        """Renew the credential, logging in again for AppRole auth.

        Never raises; failures are logged and reported as False.
        """
        with self._lock:
            token = self._token
            renewable = self._renewable
            expiring = self._expires_at is not None

        if token is None:
            logger.warning("[%s] Cannot renew: session was never authenticated", self.name)
            return False
        if not expiring:
            return True

        if renewable:
            try:
                info = self.client.renew_self(token)
                self._store(token, info)
                logger.info("[%s] Token renewed, TTL %ds", self.name, info.ttl)
                return True
            except VaultError as exc:
                logger.warning("[%s] Token renewal failed: %s", self.name, exc)
        else:
            logger.warning("[%s] Token is not renewable", self.name)

        if self.auth.uses_approle:
            try:
                self.login()
                return True
            except VaultError as exc:
                logger.warning("[%s] AppRole re-login failed: %s", self.name, exc)
        return False

    def remaining_ttl(self) -> Optional[float]:
        """Seconds until the credential expires, or None if it never does."""
        expires = self.expires_at
        if expires is None:
            return None
        return max(0.0, (expires - datetime.now(timezone.utc)).total_seconds())

    def renewal_delay(self) -> float:
        """Seconds to wait before the next renewal attempt."""
        remaining = self.remaining_ttl()
        if remaining is None:
            # Nothing to renew; re-check occasionally.
            return max(self.min_renew_interval, 3600.0)
        return max(self.min_renew_interval, remaining * self.renew_fraction)

    def _store(self, token: str, info: TokenInfo) -> None:
        expires = datetime.now(timezone.utc) + timedelta(seconds=info.ttl) if info.ttl else None
        with self._lock:
            self._token = token
            self._expires_at = expires
            self._renewable = info.renewable

    def _credential(self) -> str:
        with self._lock:
            token = self._token
            expires = self._expires_at
        if token is None:
            raise VaultAuthError(f"[{self.name}] session is not authenticated")
        if expires is not None and expires <= datetime.now(timezone.utc):
            raise VaultAuthError(f"[{self.name}] token expired at {expires.isoformat()}")
        return token

    # ------------------------------------------------------------------
    # Store calls
    # ------------------------------------------------------------------

    def read(self, path: str) -> Optional[dict[str, Any]]:
        return self.client.read(path, self._credential())

    def write(self, path: str, value: dict[str, Any]) -> None:
        self.client.write(path, value, self._credential())

    def delete(self, path: str) -> None:
        self.client.delete(path, self._credential())

    def list(self, path: str) -> list[str]:
        return self.client.list(path, self._credential())

    def list_audit_devices(self) -> dict[str, Any]:
        return self.client.list_audit_devices(self._credential())

    def enable_audit_device(self, path: str, device_type: str, options: dict[str, str], description: str = "") -> None:
        self.client.enable_audit_device(path, device_type, options, self._credential(), description)

    def disable_audit_device(self, path: str) -> None:
        self.client.disable_audit_device(path, self._credential())

    def close(self) -> None:
        self.client.close()


class SessionManager:
    """Owns the sessions for every store and keeps them renewed."""

    def __init__(self, stats: Optional[SyncStats] = None):
        self.stats = stats or SyncStats()
        self._sessions: dict[str, StoreSession] = {}

    def add(self, session: StoreSession) -> StoreSession:
        self._sessions[session.name] = session
        return session

    def acquire(self, store: str) -> StoreSession:
        """Return the session handle for ``store``.

        Raises:
            KeyError: If no session was registered under that name.
        """
        return self._sessions[store]

    def renew(self, store: str) -> bool:
        ok = self.acquire(store).renew()
        self.stats.record_renewal(store, ok)
        if not ok:
            self.stats.record_error(f"Renewal failed for {store}")
        return ok

    def start(self, stop_event: threading.Event) -> list[threading.Thread]:
        """Start one renewal thread per store.

        Args:
            stop_event: Set to end the renewal loops.

        Returns:
            The started threads.
        """
        threads = []
        for name in self._sessions:
            t = threading.Thread(
                target=self._renewal_loop,
                args=(name, stop_event),
                name=f"renew-{name}",
                daemon=True,
            )
            t.start()
            threads.append(t)
        return threads

    def _renewal_loop(self, store: str, stop_event: threading.Event) -> None:
        session = self.acquire(store)
        while not stop_event.is_set():
            delay = session.renewal_delay()
            logger.debug("[%s] Next token renewal in %.0fs", store, delay)
            stop_event.wait(timeout=delay)
            if stop_event.is_set():
                break
            if session.expires_at is None:
                continue
            self.renew(store)

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
