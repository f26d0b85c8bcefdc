"""Central configuration, constants, vocabularies and default tuning knobs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

# =============================================================================
# Source Settings
# =============================================================================
DEFAULT_BD_BIN = "bd"
TIMEZONE = "UTC"
SETTINGS_FILENAME = "beads_app.yaml"

# Files the beads CLI writes inside a project; watched for change notifications
BEADS_DIR_NAME = ".beads"
BEADS_WATCHED_FILES: frozenset[str] = frozenset({"issues.jsonl", "beads.db", "beads.db-wal"})

# =============================================================================
# Workflow Status Configuration
# =============================================================================
# Keys should be lowercase for case-insensitive matching
STATUS_ALIASES: dict[str, str] = {
    "open": "open",
    "new": "open",
    "todo": "open",
    "to do": "open",
    "reopened": "open",
    "in_progress": "in_progress",
    "in progress": "in_progress",
    "in-progress": "in_progress",
    "inprogress": "in_progress",
    "blocked": "blocked",
    "deferred": "deferred",
    "closed": "closed",
    "done": "closed",
    "resolved": "closed",
    "tombstone": "tombstone",
    "deleted": "tombstone",
    "pinned": "pinned",
}

# =============================================================================
# Issue Type Configuration
# =============================================================================
ISSUE_TYPE_ALIASES: dict[str, str] = {
    "epic": "epic",
    "feature": "feature",
    "bug": "bug",
    "task": "task",
    "chore": "chore",
    "message": "message",
    "merge-request": "merge-request",
    "merge_request": "merge-request",
    "molecule": "molecule",
    "gate": "gate",
}
DEFAULT_ISSUE_TYPE = "task"

# =============================================================================
# Event Kind Configuration
# =============================================================================
# Raw activity "type" strings -> (canonical kind, implied target status)
EVENT_KIND_ALIASES: dict[str, tuple[str, str | None]] = {
    "create": ("created", None),
    "created": ("created", None),
    "status": ("status_changed", None),
    "status_changed": ("status_changed", None),
    "statuschanged": ("status_changed", None),
    "closed": ("status_changed", "closed"),
    "close": ("status_changed", "closed"),
    "reopened": ("status_changed", "open"),
    "reopen": ("status_changed", "open"),
    "delete": ("deleted", None),
    "deleted": ("deleted", None),
    "tombstone": ("deleted", None),
}

# =============================================================================
# Dependency Configuration
# =============================================================================
GRAPH_DEPENDENCY_KINDS: frozenset[str] = frozenset({"blocks", "parent-child"})

# =============================================================================
# Priority Configuration
# =============================================================================
DEFAULT_PRIORITY = 2

# =============================================================================
# Metrics Defaults
# =============================================================================
DEFAULT_WINDOW_DAYS: int = 7
DISTRIBUTION_PERCENTILES: Sequence[int] = (50, 90, 100)
DISTRIBUTION_TARGET_BINS: int = 8
WEEKDAY_LABELS: Sequence[str] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# =============================================================================
# Watcher Defaults
# =============================================================================
DEFAULT_POLL_INTERVAL_SECONDS: float = 5.0
DEFAULT_DEBOUNCE_MS: int = 250
DEFAULT_SOURCE_TIMEOUT_SECONDS: float = 30.0
SOURCE_MAX_RETRIES: int = 3
SOURCE_RETRY_BASE_SECONDS: float = 0.5
SOURCE_RETRY_MAX_SECONDS: float = 8.0

# Computation workers used when warm views are rebuilt after a change
RECOMPUTE_MAX_WORKERS = 4

# Explicit metrics windows kept cached and rebuilt after a change
METRICS_CACHE_SIZE = 16

# If True, invariant violations in aggregation raise instead of being clamped.
STRICT_COMPUTATION = False


@dataclass(slots=True)
class AppSettings:
    bd_bin: str = DEFAULT_BD_BIN
    timezone: str = TIMEZONE
    project_dir: str | None = None
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    source_timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS
    max_retries: int = SOURCE_MAX_RETRIES
    retry_base_seconds: float = SOURCE_RETRY_BASE_SECONDS
    retry_max_seconds: float = SOURCE_RETRY_MAX_SECONDS
    window_days: int = DEFAULT_WINDOW_DAYS
    strict: bool = STRICT_COMPUTATION
