"""
vaultsync service -- wires the engine together and runs it.

Startup is strictly ordered and fails fast: both stores must log in,
the audit listener must bind and the forwarding sink must register
before a single worker thread starts. After that nothing stops the
process except a termination signal, which removes the sink and exits
without draining the apply queue.

Threads at runtime:
    audit-listener   accepts feed connections (one thread per connection)
    apply            sole consumer of the change-event queue
    scan             periodic reconciliation of the whole prefix
    renew-src/dst    token renewal, one per store
"""

from __future__ import annotations

import json
import logging
import queue
import signal
import sys
import threading
from typing import Callable, Optional

from .audit import AuditListener, AuditTranslator
from .client import VaultClient, VaultError
from .config import StoreConfig, SyncConfig
from .models import ChangeEvent, SyncStats
from .pipeline import ApplyPipeline
from .registration import RegistrationManager
from .scanner import ReconciliationScanner
from .session import SessionManager, StoreSession

logger = logging.getLogger("vaultsync.daemon")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

ClientFactory = Callable[[StoreConfig], VaultClient]


class StartupError(Exception):
    """Raised when the service cannot start; nothing is left running."""


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure console and optional file logging for the process."""
    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("httpx").setLevel(logging.WARNING)


def connect(name: str, store: StoreConfig, client_factory: ClientFactory = VaultClient.from_config) -> StoreSession:
    """Create and authenticate a session for one store.

    Raises:
        StartupError: If authentication fails.
    """
    logger.info("Connecting to %s (%s)", store.url, name)
    session = StoreSession(
        name,
        client_factory(store),
        store.auth,
        renew_fraction=store.renew_fraction,
        min_renew_interval=store.min_renew_interval,
    )
    try:
        session.login()
    except VaultError as exc:
        session.close()
        raise StartupError(f"Failed to connect to {store.url}: {exc}") from exc
    return session


class SyncService:
    """The replication engine process.

    Args:
        config: Loaded configuration.
        dry_run: Force dry-run mode regardless of the config file.
        client_factory: Builds a VaultClient per store (tests inject fakes).
    """

    def __init__(
        self,
        config: SyncConfig,
        dry_run: bool = False,
        client_factory: ClientFactory = VaultClient.from_config,
    ):
        self.config = config
        self.dry_run = dry_run or config.dry_run
        self.client_factory = client_factory
        self.stats = SyncStats()
        self.events: "queue.Queue[ChangeEvent]" = queue.Queue()
        self.sessions = SessionManager(self.stats)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self.listener: Optional[AuditListener] = None
        self.registration: Optional[RegistrationManager] = None
        self.pipeline: Optional[ApplyPipeline] = None
        self.scanner: Optional[ReconciliationScanner] = None
        self._stopped = False

    def start(self) -> None:
        """Run the startup sequence and launch all workers.

        Raises:
            StartupError: On login, bind, or registration failure.
        """
        cfg = self.config
        logger.info("Configuration:\n%s", json.dumps(cfg.redacted(), indent=2))

        src = self.sessions.add(connect("src", cfg.src, self.client_factory))
        try:
            dst = self.sessions.add(connect("dst", cfg.dst, self.client_factory))
        except StartupError:
            self.sessions.close()
            raise

        self.registration = RegistrationManager(src, cfg.id)
        self.registration.deregister()

        translator = AuditTranslator(cfg.src.prefix, cfg.src.kv_version, cfg.src.mount)
        try:
            self.listener = AuditListener(cfg.bind_address, translator, self.events, self.stats)
        except OSError as exc:
            self.sessions.close()
            raise StartupError(f"Failed to listen on {cfg.bind}: {exc}") from exc

        try:
            self.registration.register(cfg.external_address)
        except VaultError as exc:
            self.listener.stop()
            self.sessions.close()
            raise StartupError(f"Failed to add audit device {cfg.id}: {exc}") from exc
        logger.info("Audit device %s exists: %s", cfg.id, self._device_exists())

        self._setup_signals()

        self.pipeline = ApplyPipeline(
            self.events,
            src,
            dst,
            cfg.src.prefix,
            cfg.dst.prefix,
            dry_run=self.dry_run,
            stats=self.stats,
        )
        self.scanner = ReconciliationScanner(
            src, cfg.src.prefix, self.events, cfg.full_sync_interval, self.stats
        )

        self.stats.mark_started()
        logger.info("Dry run: %s", self.dry_run)

        workers = [
            ("apply", self.pipeline.run),
            ("scan", self.scanner.run),
        ]
        for name, target in workers:
            t = threading.Thread(target=target, args=(self._stop_event,), name=name, daemon=True)
            t.start()
            self._threads.append(t)
        self._threads.append(self.listener.start())
        self._threads.extend(self.sessions.start(self._stop_event))

        logger.info("vaultsync started: %s -> %s", cfg.src.prefix, cfg.dst.prefix)

    def stop(self) -> None:
        """Deregister the sink and shut down.

        Queued events and any write in flight are abandoned.
        """
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down")
        self._stop_event.set()
        if self.registration is not None:
            self.registration.shutdown()
        if self.listener is not None:
            self.listener.stop()
        dropped = self.events.qsize()
        if dropped:
            logger.warning("Dropping %d queued change event(s)", dropped)
        logger.info("Statistics: %s", json.dumps(self.stats.snapshot()))

    def run_forever(self) -> None:
        """Block until a termination signal, then stop."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _device_exists(self) -> bool:
        try:
            return self.registration.exists()
        except VaultError as exc:
            logger.warning("Could not list audit devices: %s", exc)
            return False

    def _setup_signals(self) -> None:
        """Register signal handlers for shutdown."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal handlers not installed")
            return
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s", signal.Signals(signum).name)
        self._stop_event.set()


def run_scan(config: SyncConfig, dry_run: bool = False, client_factory: ClientFactory = VaultClient.from_config) -> dict:
    """One reconciliation pass without listener or registration.

    Returns:
        Statistics snapshot after the queue has been drained.

    Raises:
        StartupError: If either store cannot be reached.
    """
    stats = SyncStats()
    events: "queue.Queue[ChangeEvent]" = queue.Queue()
    sessions = SessionManager(stats)
    src = sessions.add(connect("src", config.src, client_factory))
    try:
        dst = sessions.add(connect("dst", config.dst, client_factory))
    except StartupError:
        sessions.close()
        raise
    try:
        stats.mark_started()
        scanner = ReconciliationScanner(src, config.src.prefix, events, config.full_sync_interval, stats)
        pipeline = ApplyPipeline(
            events, src, dst, config.src.prefix, config.dst.prefix,
            dry_run=dry_run or config.dry_run, stats=stats,
        )
        scanner.run_once()
        pipeline.drain()
    finally:
        sessions.close()
    return stats.snapshot()
