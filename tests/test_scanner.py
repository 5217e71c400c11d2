"""Tests for the reconciliation scanner."""

from __future__ import annotations

import queue
import threading

import pytest

from vaultsync.models import Put
from vaultsync.scanner import ReconciliationScanner

from conftest import FakeVaultClient, make_session, wait_for


def _drain(events: queue.Queue) -> list:
    items = []
    while not events.empty():
        items.append(events.get_nowait())
    return items


@pytest.fixture
def source() -> FakeVaultClient:
    return FakeVaultClient(
        secrets={
            "secret/app/a": {"user": "alice"},
            "secret/app/b/c": {"user": "carol"},
            "secret/other/x": {"user": "xavier"},
            "secret/app-copy/a": {"user": "stale"},
        }
    )


@pytest.fixture
def scanner(source) -> ReconciliationScanner:
    return ReconciliationScanner(make_session(source), "secret/app", queue.Queue(), interval=3600)


class TestScan:
    """Tests for a single scan."""

    def test_walk_finds_leaves(self, scanner):
        assert sorted(scanner.walk()) == ["secret/app/a", "secret/app/b/c"]

    def test_emits_one_put_per_leaf(self, scanner):
        assert scanner.scan() == 2
        events = _drain(scanner.events)
        assert sorted(events, key=lambda e: e.path) == [
            Put("secret/app/a", {"user": "alice"}),
            Put("secret/app/b/c", {"user": "carol"}),
        ]

    def test_never_emits_deletes(self, scanner):
        scanner.scan()
        assert all(isinstance(e, Put) for e in _drain(scanner.events))

    def test_each_scan_reemits(self, scanner):
        scanner.scan()
        scanner.scan()
        assert len(_drain(scanner.events)) == 4

    def test_rereads_current_values(self, scanner, source):
        scanner.scan()
        _drain(scanner.events)
        source.secrets["secret/app/a"] = {"user": "alice2"}
        scanner.scan()
        assert Put("secret/app/a", {"user": "alice2"}) in _drain(scanner.events)

    def test_empty_prefix(self):
        scanner = ReconciliationScanner(
            make_session(FakeVaultClient()), "secret/app", queue.Queue(), interval=60
        )
        assert scanner.run_once() == 0
        assert scanner.stats.scans_completed == 1


class TestScanFailures:
    """Failures abort only the current cycle."""

    def test_list_failure(self, scanner, source):
        source.fail.add("list")
        assert scanner.run_once() is None
        assert scanner.stats.scans_failed == 1
        assert scanner.stats.errors

    def test_read_failure(self, scanner, source):
        source.fail.add("read")
        assert scanner.run_once() is None
        assert scanner.events.empty()

    def test_next_cycle_recovers(self, scanner, source):
        source.fail.add("list")
        assert scanner.run_once() is None
        source.fail.clear()
        assert scanner.run_once() == 2


class TestScanLoop:
    def test_scans_immediately_and_stops(self, scanner):
        stop = threading.Event()
        t = threading.Thread(target=scanner.run, args=(stop,), daemon=True)
        t.start()
        try:
            assert wait_for(lambda: scanner.stats.scans_completed == 1)
        finally:
            stop.set()
            t.join(timeout=2)
        assert not t.is_alive()

    def test_repeats_on_interval(self, source):
        scanner = ReconciliationScanner(make_session(source), "secret/app", queue.Queue(), interval=0.05)
        stop = threading.Event()
        t = threading.Thread(target=scanner.run, args=(stop,), daemon=True)
        t.start()
        try:
            assert wait_for(lambda: scanner.stats.scans_completed >= 3)
        finally:
            stop.set()
            t.join(timeout=2)
