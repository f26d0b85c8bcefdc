"""InsightService: orchestrates the watcher, caches and on-demand views."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from beads_app.analytics.aggregations.epics import EpicProgress, epic_progress_list
from beads_app.analytics.graph.builder import GraphView, build_graph_view, normalize_type_filter
from beads_app.analytics.graph.index import HierarchyIndex
from beads_app.analytics.metrics.delivery import MetricsSnapshot, MetricsWindow, compute_metrics
from beads_app.analytics.metrics.status_flow import build_timelines

from .beads_client import BeadsCLI, IssueSource
from .config import METRICS_CACHE_SIZE, RECOMPUTE_MAX_WORKERS, AppSettings
from .models import IssueTimeline, IssueType, Snapshot
from .settings import load_settings
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]
GraphKey = tuple[str | None, tuple[str, ...] | None]
MetricsKey = tuple[str, bool, MetricsWindow]


class InsightService:
    """Answers metrics and graph requests from the latest published snapshot.

    Derived data (timelines, hierarchy index, graph views, metrics) is cached
    under the snapshot fingerprint. When the watcher publishes a change, the
    timelines, the index, every graph view requested so far and the most
    recently requested explicit metrics windows are rebuilt before external
    subscribers hear about it. Rolling "last N days" windows end at the
    request time and are never cached.
    """

    def __init__(
        self,
        source: IssueSource,
        settings: AppSettings | None = None,
        *,
        watcher: ChangeWatcher | None = None,
    ):
        self.settings = settings or load_settings()
        self.watcher = watcher or ChangeWatcher(
            source,
            poll_interval=self.settings.poll_interval_seconds,
            debounce_ms=self.settings.debounce_ms,
            max_retries=self.settings.max_retries,
            retry_base_seconds=self.settings.retry_base_seconds,
            retry_max_seconds=self.settings.retry_max_seconds,
        )
        self._cache_lock = threading.RLock()
        self._timelines: tuple[str, dict[str, IssueTimeline]] | None = None
        self._index: tuple[str, HierarchyIndex] | None = None
        self._graphs: dict[tuple[str, bool, GraphKey], GraphView] = {}
        self._metrics: OrderedDict[MetricsKey, MetricsSnapshot] = OrderedDict()
        self._warm_graph_keys: set[GraphKey] = set()
        self._warm_windows: OrderedDict[MetricsWindow, None] = OrderedDict()
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = threading.Lock()
        # Registered first so caches are warm before anyone else is told.
        self.watcher.subscribe(self._on_snapshot_changed)

    @classmethod
    def for_project(cls, project_dir: str | Path | None = None, settings: AppSettings | None = None) -> InsightService:
        """Service backed by the ``bd`` CLI run inside ``project_dir``."""
        settings = settings or load_settings(project_dir)
        source = BeadsCLI(
            settings.bd_bin,
            project_dir=project_dir or settings.project_dir,
            timeout=settings.source_timeout_seconds,
        )
        return cls(source, settings)

    # ------------------ Snapshot access ------------------
    def _current(self) -> tuple[Snapshot, bool]:
        snapshot = self.watcher.snapshot
        if snapshot is None:
            self.watcher.scan()
            snapshot = self.watcher.snapshot
        if snapshot is None:
            return Snapshot.empty(datetime.now(tz=UTC)), True
        return snapshot, self.watcher.stale

    def _timelines_for(self, snapshot: Snapshot) -> dict[str, IssueTimeline]:
        with self._cache_lock:
            if self._timelines is not None and self._timelines[0] == snapshot.fingerprint:
                return self._timelines[1]
        timelines = build_timelines(snapshot)
        with self._cache_lock:
            self._timelines = (snapshot.fingerprint, timelines)
        return timelines

    def _index_for(self, snapshot: Snapshot) -> HierarchyIndex:
        with self._cache_lock:
            if self._index is not None and self._index[0] == snapshot.fingerprint:
                return self._index[1]
        index = HierarchyIndex.build(snapshot.issues, snapshot.dependencies)
        with self._cache_lock:
            self._index = (snapshot.fingerprint, index)
        return index

    def _drop_outdated(self, fingerprint: str) -> None:
        with self._cache_lock:
            self._graphs = {k: v for k, v in self._graphs.items() if k[0] == fingerprint}
            self._metrics = OrderedDict((k, v) for k, v in self._metrics.items() if k[0] == fingerprint)

    # ------------------ Requests ------------------
    def metrics(self, window: MetricsWindow | None = None, *, days: int | None = None) -> MetricsSnapshot:
        """Metrics for ``window`` (default: the last ``days`` days up to now)."""
        snapshot, stale = self._current()
        if window is None:
            rolling = MetricsWindow.last_days(days or self.settings.window_days, timezone=self.settings.timezone)
            return self._compute_metrics(snapshot, rolling, stale)
        key = (snapshot.fingerprint, stale, window)
        with self._cache_lock:
            self._warm_windows[window] = None
            self._warm_windows.move_to_end(window)
            while len(self._warm_windows) > METRICS_CACHE_SIZE:
                self._warm_windows.popitem(last=False)
            cached = self._metrics.get(key)
            if cached is not None:
                self._metrics.move_to_end(key)
                return cached
        result = self._compute_metrics(snapshot, window, stale)
        self._store_metrics(key, result)
        return result

    def _compute_metrics(self, snapshot: Snapshot, window: MetricsWindow, stale: bool) -> MetricsSnapshot:
        return compute_metrics(
            self._timelines_for(snapshot).values(),
            window,
            events=snapshot.events,
            issues=snapshot.issues,
            strict=self.settings.strict,
            stale=stale,
            fingerprint=snapshot.fingerprint,
        )

    def _store_metrics(self, key: MetricsKey, result: MetricsSnapshot) -> None:
        with self._cache_lock:
            self._metrics[key] = result
            self._metrics.move_to_end(key)
            while len(self._metrics) > METRICS_CACHE_SIZE:
                self._metrics.popitem(last=False)

    def graph(self, epic_id: str | None = None, types: Iterable[IssueType | str] | None = None) -> GraphView:
        snapshot, stale = self._current()
        graph_key: GraphKey = (epic_id or None, normalize_type_filter(types))
        key = (snapshot.fingerprint, stale, graph_key)
        with self._cache_lock:
            self._warm_graph_keys.add(graph_key)
            cached = self._graphs.get(key)
        if cached is not None:
            return cached
        view = build_graph_view(self._index_for(snapshot), graph_key[0], graph_key[1], stale=stale)
        with self._cache_lock:
            self._graphs[key] = view
        return view

    def epic_progress(self) -> list[EpicProgress]:
        snapshot, _ = self._current()
        return epic_progress_list(self._index_for(snapshot))

    def health(self) -> dict[str, Any]:
        snapshot = self.watcher.snapshot
        last_scan = self.watcher.last_scan_at
        return {
            "state": self.watcher.state.value,
            "running": self.watcher.is_running,
            "stale": self.watcher.stale if snapshot is not None else True,
            "last_error": self.watcher.last_error,
            "last_scan_at": last_scan.isoformat() if last_scan else None,
            "scan_count": self.watcher.scan_count,
            "fingerprint": snapshot.fingerprint if snapshot else None,
            "issues": len(snapshot.issues) if snapshot else 0,
            "events": len(snapshot.events) if snapshot else 0,
        }

    # ------------------ Change notification ------------------
    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """``listener()`` is called after each change once warm views are rebuilt."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _rebuild_graph(self, snapshot: Snapshot, graph_key: GraphKey) -> None:
        view = build_graph_view(self._index_for(snapshot), graph_key[0], graph_key[1], stale=False)
        with self._cache_lock:
            self._graphs[(snapshot.fingerprint, False, graph_key)] = view

    def _rebuild_metrics(self, snapshot: Snapshot, window: MetricsWindow) -> None:
        result = self._compute_metrics(snapshot, window, False)
        self._store_metrics((snapshot.fingerprint, False, window), result)

    def _on_snapshot_changed(self, snapshot: Snapshot) -> None:
        self._drop_outdated(snapshot.fingerprint)
        with self._cache_lock:
            warm = sorted(self._warm_graph_keys, key=repr)
            windows = list(self._warm_windows)

        with ThreadPoolExecutor(max_workers=RECOMPUTE_MAX_WORKERS) as pool:
            futures = [pool.submit(self._timelines_for, snapshot), pool.submit(self._index_for, snapshot)]
            for fut in as_completed(futures):
                try:
                    fut.result()
                except Exception as exc:
                    logger.warning("Recompute task failed: %s", exc)
            futures = [pool.submit(self._rebuild_graph, snapshot, key) for key in warm]
            futures += [pool.submit(self._rebuild_metrics, snapshot, window) for window in windows]
            for fut in as_completed(futures):
                try:
                    fut.result()
                except Exception as exc:
                    logger.warning("Warm view rebuild failed: %s", exc)
        logger.debug(
            "Rebuilt %s graph views and %s metrics windows for %s",
            len(warm),
            len(windows),
            snapshot.fingerprint[:12],
        )

        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Change subscriber %r failed", listener)

    # ------------------ Lifecycle ------------------
    def start(self) -> None:
        if self.watcher.snapshot is None:
            self.watcher.scan()
        self.watcher.start()

    def stop(self) -> None:
        self.watcher.stop()

    def __enter__(self) -> InsightService:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
