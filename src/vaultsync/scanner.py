"""
Reconciliation scanner -- the convergence backstop.

Walks the whole watched prefix on the source at a fixed interval and
enqueues a Put carrying the current value of every secret it finds.
Scans never produce deletes; removals only arrive through the audit feed.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Iterator, Optional

from .client import VaultError
from .models import ChangeEvent, Put, SyncStats
from .session import StoreSession

logger = logging.getLogger("vaultsync.scanner")


class ReconciliationScanner:
    """Periodic full re-read of the source prefix.

    Args:
        source: Session for the source store.
        prefix: Watched source prefix.
        events: Shared apply queue.
        interval: Seconds between scans.
        stats: Optional shared statistics.
    """

    def __init__(
        self,
        source: StoreSession,
        prefix: str,
        events: "queue.Queue[ChangeEvent]",
        interval: float,
        stats: Optional[SyncStats] = None,
    ):
        self.source = source
        self.prefix = prefix.strip("/")
        self.events = events
        self.interval = interval
        self.stats = stats or SyncStats()

    def walk(self, path: Optional[str] = None) -> Iterator[str]:
        """Yield every leaf secret path below ``path``, depth first.

        Raises:
            VaultError: If any listing fails.
        """
        path = (path or self.prefix).rstrip("/")
        for key in self.source.list(path):
            child = f"{path}/{key}"
            if key.endswith("/"):
                yield from self.walk(child)
            else:
                yield child

    def scan(self) -> int:
        """Run one scan, enqueueing a Put per secret.

        Returns:
            Number of events enqueued.

        Raises:
            VaultError: If a listing or read fails; the scan stops there.
        """
        count = 0
        for path in self.walk():
            value = self.source.read(path)
            if value is None:
                # Removed between list and read
                continue
            self.events.put(Put(path, value))
            self.stats.record_received()
            count += 1
        return count

    def run_once(self) -> Optional[int]:
        """Run one scan, containing any store failure to this cycle."""
        logger.info("Full sync of %s started", self.prefix)
        try:
            count = self.scan()
        except VaultError as exc:
            logger.error("Full sync of %s aborted: %s", self.prefix, exc)
            self.stats.record_scan(ok=False)
            self.stats.record_error(f"Scan: {exc}")
            return None
        self.stats.record_scan(ok=True)
        logger.info("Full sync of %s queued %d secret(s)", self.prefix, count)
        return count

    def run(self, stop_event: threading.Event) -> None:
        """Scan immediately, then every ``interval`` seconds until stopped."""
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(timeout=self.interval)
