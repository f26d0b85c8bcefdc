"""Source adapters returning raw beads records (CLI, files, in-memory)."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Protocol

from .config import BEADS_DIR_NAME, BEADS_WATCHED_FILES, DEFAULT_BD_BIN, DEFAULT_SOURCE_TIMEOUT_SECONDS
from .errors import SourceUnavailable
from .models import SourcePayload

logger = logging.getLogger(__name__)


class IssueSource(Protocol):
    """Anything the watcher can poll for a fresh payload."""

    def fetch(self) -> SourcePayload: ...

    @property
    def watch_paths(self) -> list[Path]: ...

    @property
    def watch_names(self) -> frozenset[str] | None: ...


def parse_jsonl(text: str, *, origin: str = "jsonl") -> list[dict[str, Any]]:
    """Parse one JSON object per line; blank and undecodable lines are skipped."""
    records: list[dict[str, Any]] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping undecodable %s line %s: %s", origin, lineno, exc)
            continue
        if not isinstance(record, dict):
            logger.warning("Skipping non-object %s line %s", origin, lineno)
            continue
        records.append(record)
    return records


def parse_activity(text: str) -> list[dict[str, Any]]:
    """Accept either a JSON array of activity records or JSONL."""
    stripped = text.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise SourceUnavailable(f"activity output is not valid JSON: {exc}") from exc
        return [r for r in data if isinstance(r, dict)]
    return parse_jsonl(stripped, origin="activity")


class BeadsCLI:
    """Reads issues via ``bd export`` and the event log via ``bd activity --json``."""

    def __init__(
        self,
        bin_path: str | None = None,
        *,
        project_dir: str | Path | None = None,
        timeout: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
    ):
        self.bin_path = bin_path or os.environ.get("BD_BIN") or DEFAULT_BD_BIN
        self.project_dir = Path(project_dir) if project_dir else None
        self.timeout = timeout

    @property
    def watch_paths(self) -> list[Path]:
        base = self.project_dir or Path.cwd()
        beads_dir = base / BEADS_DIR_NAME
        return [beads_dir] if beads_dir.is_dir() else []

    @property
    def watch_names(self) -> frozenset[str]:
        return BEADS_WATCHED_FILES

    def _run(self, *args: str) -> str:
        cmd = [self.bin_path, *args]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                cwd=self.project_dir,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise SourceUnavailable(f"{' '.join(cmd)} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise SourceUnavailable(f"cannot run {self.bin_path}: {exc}") from exc
        if proc.returncode != 0:
            raise SourceUnavailable(f"{' '.join(cmd)} exited with {proc.returncode}: {proc.stderr.strip()[:200]}")
        return proc.stdout

    def fetch_issues(self) -> list[dict[str, Any]]:
        return parse_jsonl(self._run("export"), origin="export")

    def fetch_activity(self) -> list[dict[str, Any]]:
        return parse_activity(self._run("activity", "--json"))

    def fetch(self) -> SourcePayload:
        issues = self.fetch_issues()
        events = self.fetch_activity()
        logger.debug("bd returned %s issues and %s activity records", len(issues), len(events))
        return SourcePayload(issues=issues, events=events)


class JsonlFileSource:
    """Reads an exported issues JSONL file and an optional activity file."""

    def __init__(self, issues_path: str | Path, events_path: str | Path | None = None):
        self.issues_path = Path(issues_path)
        self.events_path = Path(events_path) if events_path else None

    @property
    def watch_paths(self) -> list[Path]:
        paths = [self.issues_path.parent]
        if self.events_path is not None and self.events_path.parent not in paths:
            paths.append(self.events_path.parent)
        return paths

    @property
    def watch_names(self) -> frozenset[str]:
        names = {self.issues_path.name}
        if self.events_path is not None:
            names.add(self.events_path.name)
        return frozenset(names)

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SourceUnavailable(f"cannot read {path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise SourceUnavailable(f"{path} is not valid UTF-8: {exc}") from exc

    def fetch(self) -> SourcePayload:
        issues = parse_jsonl(self._read(self.issues_path), origin=self.issues_path.name)
        events: list[dict[str, Any]] = []
        if self.events_path is not None:
            events = parse_activity(self._read(self.events_path))
        return SourcePayload(issues=issues, events=events)


class StaticSource:
    """In-memory source; tests swap payloads and inject failures."""

    def __init__(self, payload: SourcePayload | None = None):
        self._payload = payload or SourcePayload()
        self._lock = threading.Lock()
        self.fail_next = 0
        self.fetch_count = 0

    @property
    def watch_paths(self) -> list[Path]:
        return []

    @property
    def watch_names(self) -> frozenset[str] | None:
        return None

    def replace(self, payload: SourcePayload) -> None:
        with self._lock:
            self._payload = payload

    def fetch(self) -> SourcePayload:
        with self._lock:
            self.fetch_count += 1
            if self.fail_next > 0:
                self.fail_next -= 1
                raise SourceUnavailable("static source failure")
            payload = self._payload
        return SourcePayload(
            issues=list(payload.issues),
            events=list(payload.events),
            dependencies=list(payload.dependencies),
        )
