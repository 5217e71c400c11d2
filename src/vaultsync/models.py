"""
Data models shared by the sync engine.

Change events are the only thing that travels through the apply queue.
Audit records are transient: one per parsed feed line, thrown away as
soon as the translator has decided whether they matter.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Verb(str, Enum):
    """What an audited request did to a path."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    OTHER = "other"


class Outcome(str, Enum):
    """Result of an audited request.

    PENDING marks request-phase entries, which Vault logs before the
    operation has run.
    """

    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


OPERATION_VERBS = {
    "create": Verb.WRITE,
    "update": Verb.WRITE,
    "patch": Verb.WRITE,
    "delete": Verb.DELETE,
    "read": Verb.READ,
    "list": Verb.READ,
}


@dataclass(frozen=True)
class Put:
    """A secret at ``path`` was created or updated.

    ``value`` is None when the event came from the audit feed, which only
    carries hashed payloads; the apply stage reads it from the source.
    """

    path: str
    value: Optional[dict[str, Any]] = None

    @property
    def kind(self) -> str:
        return "put"


@dataclass(frozen=True)
class Delete:
    """A secret at ``path`` was removed."""

    path: str

    @property
    def kind(self) -> str:
        return "delete"


ChangeEvent = Union[Put, Delete]


# ---------------------------------------------------------------------------
# Audit feed schema
# ---------------------------------------------------------------------------

class AuditRequest(BaseModel):
    """The request section of a Vault audit entry."""

    model_config = ConfigDict(extra="ignore")

    operation: str
    path: str
    mount_type: Optional[str] = None


class AuditEntry(BaseModel):
    """One raw line of the Vault JSON audit log.

    Unknown fields are ignored; only the ones needed to classify the
    request are required.
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    request: AuditRequest
    error: Optional[str] = None

    def to_record(self) -> "AuditRecord":
        if self.type != "response":
            outcome = Outcome.PENDING
        elif self.error:
            outcome = Outcome.ERROR
        else:
            outcome = Outcome.SUCCESS
        verb = OPERATION_VERBS.get(self.request.operation.lower(), Verb.OTHER)
        return AuditRecord(verb=verb, path=self.request.path, outcome=outcome)


class AuditRecord(BaseModel):
    """Classified audit entry: verb, path and outcome."""

    verb: Verb
    path: str
    outcome: Outcome

    @property
    def is_change(self) -> bool:
        """True for successful writes and deletes."""
        return self.outcome == Outcome.SUCCESS and self.verb in (Verb.WRITE, Verb.DELETE)


# ---------------------------------------------------------------------------
# Runtime statistics
# ---------------------------------------------------------------------------

class SyncStats:
    """Thread-safe counters for the running engine.

    Every worker records into the same instance. All access is
    lock-protected.
    """

    MAX_ERRORS = 50

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_scan: Optional[datetime] = None
        self.last_renewal: dict[str, datetime] = {}
        self.events_received: int = 0
        self.events_applied: int = 0
        self.events_unchanged: int = 0
        self.events_failed: int = 0
        self.scans_completed: int = 0
        self.scans_failed: int = 0
        self.renewals: int = 0
        self.renewal_failures: int = 0
        self.errors: list[str] = []

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current counters.

        Returns:
            Dict with all counters, safe for JSON serialization.
        """
        with self._lock:
            return {
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "uptime_seconds": (
                    (datetime.now(timezone.utc) - self.started_at).total_seconds()
                    if self.started_at
                    else 0
                ),
                "last_scan": self.last_scan.isoformat() if self.last_scan else None,
                "last_renewal": {k: v.isoformat() for k, v in self.last_renewal.items()},
                "events_received": self.events_received,
                "events_applied": self.events_applied,
                "events_unchanged": self.events_unchanged,
                "events_failed": self.events_failed,
                "scans_completed": self.scans_completed,
                "scans_failed": self.scans_failed,
                "renewals": self.renewals,
                "renewal_failures": self.renewal_failures,
                "recent_errors": self.errors[-10:],
            }

    def mark_started(self) -> None:
        with self._lock:
            self.started_at = datetime.now(timezone.utc)

    def record_received(self, count: int = 1) -> None:
        """Record events pushed onto the apply queue."""
        with self._lock:
            self.events_received += count

    def record_applied(self, unchanged: bool = False) -> None:
        """Record an event the apply stage handled successfully."""
        with self._lock:
            if unchanged:
                self.events_unchanged += 1
            else:
                self.events_applied += 1

    def record_failed(self, error: str) -> None:
        with self._lock:
            self.events_failed += 1
        self.record_error(error)

    def record_scan(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.scans_completed += 1
                self.last_scan = datetime.now(timezone.utc)
            else:
                self.scans_failed += 1

    def record_renewal(self, store: str, ok: bool) -> None:
        with self._lock:
            if ok:
                self.renewals += 1
                self.last_renewal[store] = datetime.now(timezone.utc)
            else:
                self.renewal_failures += 1

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > self.MAX_ERRORS:
                self.errors = self.errors[-self.MAX_ERRORS:]


class TokenInfo(BaseModel):
    """What Vault reports about a token's lifetime."""

    ttl: int = Field(default=0, description="Seconds left; 0 means the token never expires")
    renewable: bool = False
