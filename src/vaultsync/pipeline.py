"""
Apply pipeline -- the single consumer of the change-event queue.

Events are applied strictly one at a time in arrival order, which is
what keeps two writes to the same destination path from racing. A
failed event is logged and dropped; the next reconciliation scan
re-applies current state.

A scan can read a secret just before the audit feed reports its
deletion, leaving a stale Put queued behind the Delete. Puts for
recently deleted paths are therefore re-read from the source before
they are written.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

from .audit import under_prefix
from .client import VaultError
from .models import ChangeEvent, Delete, Put, SyncStats
from .session import StoreSession

logger = logging.getLogger("vaultsync.pipeline")

POLL_TIMEOUT = 0.5


class ApplyPipeline:
    """Rewrites event paths and applies them to the destination.

    Args:
        events: Shared apply queue.
        source: Source session, used to resolve Put events without a value.
        destination: Destination session.
        src_prefix: Watched source prefix.
        dst_prefix: Destination prefix mirroring it.
        dry_run: Log intended changes instead of making them.
        stats: Optional shared statistics.
    """

    def __init__(
        self,
        events: "queue.Queue[ChangeEvent]",
        source: StoreSession,
        destination: StoreSession,
        src_prefix: str,
        dst_prefix: str,
        dry_run: bool = False,
        stats: Optional[SyncStats] = None,
    ):
        self.events = events
        self.source = source
        self.destination = destination
        self.src_prefix = src_prefix.strip("/")
        self.dst_prefix = dst_prefix.strip("/")
        self.dry_run = dry_run
        self.stats = stats or SyncStats()
        # Source paths deleted since their last confirmed write
        self._deleted: set[str] = set()

    def rewrite_path(self, path: str) -> str:
        """Replace the leading source prefix with the destination prefix.

        Raises:
            ValueError: If ``path`` is not below the source prefix.
        """
        path = path.strip("/")
        if not under_prefix(path, self.src_prefix):
            raise ValueError(f"{path} is not under {self.src_prefix}")
        return self.dst_prefix + path[len(self.src_prefix):]

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one event to the destination.

        Returns:
            True if the event was applied (or skipped as unchanged, or
            logged in dry-run mode); False if it was dropped.
        """
        try:
            target = self.rewrite_path(event.path)
        except ValueError as exc:
            logger.error("Dropping %s event: %s", event.kind, exc)
            self.stats.record_failed(str(exc))
            return False
        try:
            if isinstance(event, Put):
                return self._apply_put(event, target)
            if isinstance(event, Delete):
                return self._apply_delete(event, target)
        except VaultError as exc:
            logger.error("Failed to %s %s -> %s: %s", event.kind, event.path, target, exc)
            self.stats.record_failed(f"{event.kind} {target}: {exc}")
            return False
        raise TypeError(f"Unknown change event: {event!r}")

    def _apply_put(self, event: Put, target: str) -> bool:
        value = event.value
        if value is None or event.path in self._deleted:
            # A value read before a queued delete must not resurrect the secret
            self._deleted.discard(event.path)
            value = self.source.read(event.path)
            if value is None:
                logger.info("Secret %s no longer exists on source, skipping", event.path)
                self.stats.record_applied(unchanged=True)
                return True

        if self.destination.read(target) == value:
            logger.debug("Secret %s unchanged", target)
            self.stats.record_applied(unchanged=True)
            return True

        if self.dry_run:
            logger.info("[dry-run] Would write %s -> %s", event.path, target)
        else:
            self.destination.write(target, value)
            logger.info("Secret %s -> %s written", event.path, target)
        self.stats.record_applied()
        return True

    def _apply_delete(self, event: Delete, target: str) -> bool:
        if self.dry_run:
            logger.info("[dry-run] Would delete %s", target)
        else:
            self.destination.delete(target)
            logger.info("Secret %s deleted", target)
        self._deleted.add(event.path)
        self.stats.record_applied()
        return True

    def _next(self, block: bool) -> Optional[ChangeEvent]:
        try:
            return self.events.get(block=block, timeout=POLL_TIMEOUT if block else None)
        except queue.Empty:
            return None

    def _process(self, event: ChangeEvent) -> None:
        try:
            self.apply(event)
        finally:
            self.events.task_done()

    def drain(self) -> int:
        """Apply everything currently queued without waiting for more.

        Returns:
            Number of events processed.
        """
        count = 0
        while True:
            event = self._next(block=False)
            if event is None:
                return count
            self._process(event)
            count += 1

    def run(self, stop_event: threading.Event) -> None:
        """Consume the queue until stopped."""
        logger.info(
            "Applying %s -> %s (dry run: %s)", self.src_prefix, self.dst_prefix, self.dry_run
        )
        while not stop_event.is_set():
            event = self._next(block=True)
            if event is not None:
                self._process(event)
