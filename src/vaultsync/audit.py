"""
Audit feed ingestion -- the real-time half of replication.

The source Vault streams its JSON audit log to a socket audit device
pointing at this process. Every connection gets its own handler thread
that reads newline-delimited entries and hands each complete line to
the translator. Lines that do not parse are dropped; the connection
keeps going.

Only successful create/update/delete responses under the watched prefix
become change events. Everything else is discarded silently.
"""

from __future__ import annotations

import json
import logging
import queue
import socketserver
import threading
from typing import Optional

from pydantic import ValidationError

from .models import AuditEntry, AuditRecord, ChangeEvent, Delete, Put, SyncStats, Verb

logger = logging.getLogger("vaultsync.audit")


def under_prefix(path: str, prefix: str) -> bool:
    """True if ``path`` lies strictly below ``prefix`` (segment-exact)."""
    return path.startswith(prefix.rstrip("/") + "/")


class AuditTranslator:
    """Turns audit feed lines into change events.

    Args:
        prefix: Watched source prefix, e.g. ``secret/app``.
        kv_version: KV engine version of the source mount.
        mount: KV mount of the source prefix (KV v2 path normalisation).
    """

    def __init__(self, prefix: str, kv_version: int = 1, mount: Optional[str] = None):
        self.prefix = prefix.strip("/")
        self.kv_version = kv_version
        self.mount = (mount or self.prefix.split("/", 1)[0]).strip("/")

    def parse(self, line: str) -> Optional[AuditRecord]:
        """Parse one feed line into an AuditRecord, or None if malformed."""
        try:
            entry = AuditEntry.model_validate(json.loads(line))
        except (ValueError, TypeError, RecursionError, ValidationError) as exc:
            logger.debug("Discarding malformed audit line (%s)", type(exc).__name__)
            return None
        return entry.to_record()

    def logical_path(self, record: AuditRecord) -> Optional[str]:
        """Map the request path to the logical secret path.

        KV v1 paths are already logical. KV v2 requests go through the
        ``data/`` and ``metadata/`` sub-APIs; anything else (destroy,
        undelete, config) has no single logical effect and is dropped.
        """
        path = record.path.strip("/")
        if self.kv_version == 1:
            return path

        head = self.mount + "/"
        if not path.startswith(head):
            return None
        api, _, rest = path[len(head):].partition("/")
        if not rest:
            return None
        if api == "data" and record.verb in (Verb.WRITE, Verb.DELETE):
            return f"{self.mount}/{rest}"
        if api == "metadata" and record.verb == Verb.DELETE:
            return f"{self.mount}/{rest}"
        return None

    def to_event(self, record: AuditRecord) -> Optional[ChangeEvent]:
        if not record.is_change:
            return None
        path = self.logical_path(record)
        if path is None or not under_prefix(path, self.prefix):
            return None
        if record.verb == Verb.WRITE:
            return Put(path)
        return Delete(path)

    def translate(self, line: str) -> Optional[ChangeEvent]:
        """Translate one feed line into a change event, or None."""
        line = line.strip()
        if not line:
            return None
        record = self.parse(line)
        if record is None:
            return None
        return self.to_event(record)


class _AuditStreamHandler(socketserver.StreamRequestHandler):
    """Reads one audit connection until the peer goes away."""

    server: "_AuditServer"

    def handle(self) -> None:
        peer = "%s:%s" % self.client_address[:2]
        logger.info("Audit stream connected from %s", peer)
        listener = self.server.listener
        try:
            for raw in self.rfile:
                if not raw.endswith(b"\n"):
                    logger.debug("Discarding incomplete trailing line from %s", peer)
                    break
                listener.ingest(raw.decode("utf-8", errors="replace"))
        except OSError as exc:
            logger.warning("Audit stream from %s failed: %s", peer, exc)
        logger.info("Audit stream from %s closed", peer)


class _AuditServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], listener: "AuditListener"):
        self.listener = listener
        super().__init__(address, _AuditStreamHandler)


class AuditListener:
    """TCP listener for the source's audit feed.

    Binds at construction so a bind failure surfaces before any worker
    starts. Each accepted connection is served by its own thread.

    Args:
        address: (host, port) to bind.
        translator: Line translator.
        events: Shared apply queue.
        stats: Optional shared statistics.

    Raises:
        OSError: If the address cannot be bound.
    """

    def __init__(
        self,
        address: tuple[str, int],
        translator: AuditTranslator,
        events: "queue.Queue[ChangeEvent]",
        stats: Optional[SyncStats] = None,
    ):
        self.translator = translator
        self.events = events
        self.stats = stats or SyncStats()
        self._server = _AuditServer(address, self)
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        return self._server.server_address[:2]

    def ingest(self, line: str) -> Optional[ChangeEvent]:
        """Translate a line and enqueue the resulting event, if any."""
        event = self.translator.translate(line)
        if event is not None:
            logger.debug("Audit %s %s", event.kind, event.path)
            self.events.put(event)
            self.stats.record_received()
        return event

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="audit-listener",
            daemon=True,
        )
        self._thread.start()
        logger.info("Listening for audit stream on %s:%d", *self.address)
        return self._thread

    def stop(self) -> None:
        """Stop accepting and release the socket."""
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self._server.server_close()
