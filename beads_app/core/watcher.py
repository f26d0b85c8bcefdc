"""Change detection: poll/notify the source, fingerprint, publish snapshots."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .beads_client import IssueSource
from .config import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    SOURCE_MAX_RETRIES,
    SOURCE_RETRY_BASE_SECONDS,
    SOURCE_RETRY_MAX_SECONDS,
)
from .errors import SourceUnavailable
from .events import normalize_events
from .mappers import collect_dependencies, map_issues
from .models import Snapshot, SourcePayload

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


class WatcherState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


def fingerprint_payload(payload: SourcePayload) -> str:
    """Content hash of a raw payload; key order inside records does not matter."""
    body = {"issues": payload.issues, "events": payload.events, "dependencies": payload.dependencies}
    return hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()


def build_snapshot(
    payload: SourcePayload, *, fingerprint: str | None = None, fetched_at: datetime | None = None
) -> Snapshot:
    issues = map_issues(payload.issues)
    events = normalize_events(payload.events)
    dependencies = collect_dependencies(issues, payload.dependencies)
    return Snapshot(
        issues=tuple(issues),
        events=tuple(events),
        dependencies=tuple(dependencies),
        fingerprint=fingerprint or fingerprint_payload(payload),
        fetched_at=fetched_at or datetime.now(tz=UTC),
    )


class SourceChangeHandler(FileSystemEventHandler):
    """Forward file events for the watched names to ``on_change``."""

    def __init__(self, on_change: Callable[[], None], names: frozenset[str] | None = None):
        self.on_change = on_change
        self.names = names

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed_no_write"):
            return
        if self.names is not None:
            paths = [event.src_path, getattr(event, "dest_path", "") or ""]
            names = {Path(p if isinstance(p, str) else p.decode()).name for p in paths if p}
            if not names & self.names:
                return
        self.on_change()


class ChangeWatcher:
    """Keeps the latest snapshot of a source and tells subscribers when it changes.

    A single loop thread scans on every poll tick and whenever it is woken
    by ``request_refresh`` or a debounced filesystem notification. Scans are
    serialized; a failed fetch keeps the last good snapshot and marks it stale.
    """

    def __init__(
        self,
        source: IssueSource,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        max_retries: int = SOURCE_MAX_RETRIES,
        retry_base_seconds: float = SOURCE_RETRY_BASE_SECONDS,
        retry_max_seconds: float = SOURCE_RETRY_MAX_SECONDS,
        sleep: Callable[[float], Any] | None = None,
    ):
        self.source = source
        self.poll_interval = poll_interval
        self.debounce_seconds = debounce_ms / 1000.0
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds

        self._stop = threading.Event()
        self._wake = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._scan_lock = threading.RLock()
        self._scanned = threading.Condition()
        self._listeners_lock = threading.Lock()
        self._debounce_lock = threading.Lock()

        self._listeners: list[SnapshotListener] = []
        self._debounce_timer: threading.Timer | None = None
        self._thread: threading.Thread | None = None
        self._observer: Any = None

        self._state = WatcherState.IDLE
        self._snapshot: Snapshot | None = None
        self._stale = False
        self._last_error: str | None = None
        self._last_scan_at: datetime | None = None
        self._scan_count = 0

    # ------------------ Published state ------------------
    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_scan_at(self) -> datetime | None:
        return self._last_scan_at

    @property
    def scan_count(self) -> int:
        return self._scan_count

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------ Subscriptions ------------------
    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener(snapshot)`` after every change; returns an unsubscribe callable."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, snapshot: Snapshot) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Change listener %r failed", listener)

    # ------------------ Triggers ------------------
    def request_refresh(self) -> None:
        self._wake.set()

    def notify_filesystem_change(self) -> None:
        """Restart the debounce timer; the scan runs once the burst settles."""
        with self._debounce_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            timer = threading.Timer(self.debounce_seconds, self._wake.set)
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()

    # ------------------ Scanning ------------------
    def _fetch_with_retry(self) -> SourcePayload:
        attempt = 0
        while True:
            try:
                return self.source.fetch()
            except SourceUnavailable as exc:
                if attempt >= self.max_retries:
                    raise
                delay = min(self.retry_base_seconds * (2**attempt), self.retry_max_seconds)
                attempt += 1
                logger.info("Source unavailable (%s); retry %s/%s in %.2fs", exc, attempt, self.max_retries, delay)
                self._sleep(delay)

    def scan(self) -> WatcherState:
        """Fetch once (with retries) and publish a new snapshot if content changed."""
        with self._scan_lock:
            self._state = WatcherState.SCANNING
            changed: Snapshot | None = None
            try:
                payload = self._fetch_with_retry()
            except SourceUnavailable as exc:
                self._stale = True
                self._last_error = str(exc)
                result = WatcherState.UNCHANGED
                logger.warning("Source unavailable after %s retries; serving stale snapshot: %s", self.max_retries, exc)
            else:
                fingerprint = fingerprint_payload(payload)
                if self._stale:
                    logger.info("Source recovered")
                self._stale = False
                self._last_error = None
                if self._snapshot is not None and self._snapshot.fingerprint == fingerprint:
                    result = WatcherState.UNCHANGED
                else:
                    changed = build_snapshot(payload, fingerprint=fingerprint)
                    self._snapshot = changed
                    result = WatcherState.CHANGED
                    logger.debug(
                        "Published snapshot %s (%s issues, %s events)",
                        fingerprint[:12],
                        len(changed.issues),
                        len(changed.events),
                    )
            self._last_scan_at = datetime.now(tz=UTC)
            self._state = result
            if changed is not None:
                self._notify(changed)
            self._state = WatcherState.IDLE

        with self._scanned:
            self._scan_count += 1
            self._scanned.notify_all()
        return result

    def wait_for_scans(self, count: int, timeout: float | None = None) -> bool:
        """Block until at least ``count`` scans have completed."""
        with self._scanned:
            return self._scanned.wait_for(lambda: self._scan_count >= count, timeout=timeout)

    # ------------------ Lifecycle ------------------
    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(timeout=self.poll_interval)
            if self._stop.is_set():
                break
            self._wake.clear()
            try:
                self.scan()
            except Exception:
                logger.exception("Watcher scan failed")

    def _start_observer(self) -> None:
        paths = [p for p in self.source.watch_paths if Path(p).is_dir()]
        if not paths:
            return
        handler = SourceChangeHandler(self.notify_filesystem_change, getattr(self.source, "watch_names", None))
        observer = Observer()
        for path in paths:
            observer.schedule(handler, str(path), recursive=False)
        observer.start()
        self._observer = observer
        logger.debug("Watching %s for changes", ", ".join(str(p) for p in paths))

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="beads-watcher", daemon=True)
        self._thread.start()
        self._start_observer()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        with self._debounce_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
                self._debounce_timer = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=1.0)
            self._observer = None
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
