"""Mapping raw beads export records into Issue and Dependency instances."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import pandas as pd

from .config import DEFAULT_PRIORITY
from .errors import MalformedRecord
from .models import Dependency, Issue, IssueStatus
from .status import normalize_issue_type, normalize_status

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 string (or datetime) into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None when the value is empty,
    is not a string or datetime, or cannot be parsed.
    """
    if not isinstance(value, (str, datetime)) or value == "":
        return None
    try:
        ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def map_priority(value: Any) -> int:
    if value is None or value == "":
        return DEFAULT_PRIORITY
    try:
        return int(value)
    except (TypeError, ValueError):
        text = str(value).strip().upper()
        if text.startswith("P") and text[1:].isdigit():
            return int(text[1:])
        return DEFAULT_PRIORITY


def map_dependency(raw: dict[str, Any], owner_id: str | None = None) -> Dependency:
    """Map one dependency record.

    The export embeds dependencies under each issue as ``issue_id`` (the
    dependent) / ``depends_on_id`` (the blocker or parent).
    """
    if not isinstance(raw, dict):
        raise MalformedRecord("dependency record is not an object", raw)
    from_id = raw.get("issue_id") or raw.get("from") or owner_id
    to_id = raw.get("depends_on_id") or raw.get("to")
    if not from_id or not to_id:
        raise MalformedRecord("dependency record is missing an endpoint", raw)
    kind = str(raw.get("type") or raw.get("kind") or "blocks").strip().lower()
    return Dependency(
        from_id=str(from_id),
        to_id=str(to_id),
        kind=kind,
        created_at=parse_timestamp(raw.get("created_at")),
        created_by=raw.get("created_by"),
    )


def map_issue(raw: dict[str, Any]) -> Issue:
    if not isinstance(raw, dict):
        raise MalformedRecord("issue record is not an object", raw)
    issue_id = raw.get("id")
    if not issue_id or not isinstance(issue_id, str):
        raise MalformedRecord("issue record has no id", raw)

    status_raw = raw.get("status")
    status = normalize_status(status_raw) if status_raw else IssueStatus.OPEN
    if status is None:
        raise MalformedRecord(f"issue {issue_id} has unknown status {status_raw!r}", raw)

    raw_deps = raw.get("dependencies")
    if raw_deps is not None and not isinstance(raw_deps, list):
        logger.warning("Ignoring non-list dependencies of %s", issue_id)
        raw_deps = None
    raw_labels = raw.get("labels")
    if raw_labels is not None and not isinstance(raw_labels, list):
        logger.warning("Ignoring non-list labels of %s", issue_id)
        raw_labels = None

    dependencies: list[Dependency] = []
    for dep in raw_deps or []:
        try:
            dependencies.append(map_dependency(dep, owner_id=issue_id))
        except MalformedRecord as exc:
            logger.warning("Skipping dependency of %s: %s", issue_id, exc)

    return Issue(
        id=issue_id,
        title=str(raw.get("title") or ""),
        issue_type=normalize_issue_type(raw.get("issue_type") or raw.get("type")),
        status=status,
        priority=map_priority(raw.get("priority")),
        created_at=parse_timestamp(raw.get("created_at")),
        updated_at=parse_timestamp(raw.get("updated_at")),
        closed_at=parse_timestamp(raw.get("closed_at")),
        assignee=raw.get("assignee"),
        labels=tuple(str(label) for label in raw_labels or ()),
        dependencies=tuple(dependencies),
    )


def map_issues(records: Iterable[dict[str, Any]]) -> list[Issue]:
    """Map a batch of issue records, skipping (and logging) malformed ones."""
    issues: list[Issue] = []
    seen: set[str] = set()
    for raw in records:
        try:
            issue = map_issue(raw)
        except MalformedRecord as exc:
            logger.warning("Skipping malformed issue record: %s", exc)
            continue
        if issue.id in seen:
            logger.warning("Duplicate issue id %s in export; keeping the first record", issue.id)
            continue
        seen.add(issue.id)
        issues.append(issue)
    return issues


def collect_dependencies(issues: Iterable[Issue], extra: Iterable[dict[str, Any]] = ()) -> list[Dependency]:
    """Embedded dependencies plus any standalone records, deduplicated."""
    out: list[Dependency] = []
    seen: set[tuple[str, str, str]] = set()

    def _add(dep: Dependency) -> None:
        key = (dep.from_id, dep.to_id, dep.kind)
        if key not in seen:
            seen.add(key)
            out.append(dep)

    for issue in issues:
        for dep in issue.dependencies:
            _add(dep)
    for raw in extra:
        try:
            _add(map_dependency(raw))
        except MalformedRecord as exc:
            logger.warning("Skipping malformed dependency record: %s", exc)
    return out


def issues_to_dataframe(issues: Iterable[Issue]) -> pd.DataFrame:
    rows = []
    for i in issues:
        rows.append(
            {
                "id": i.id,
                "title": i.title,
                "issue_type": i.issue_type.value,
                "status": i.status.value,
                "priority": i.priority,
                "created_at": i.created_at,
                "updated_at": i.updated_at,
                "closed_at": i.closed_at,
                "assignee": i.assignee or "Unassigned",
                "parent_id": i.parent_id,
            }
        )
    return pd.DataFrame(
        rows,
        columns=[
            "id",
            "title",
            "issue_type",
            "status",
            "priority",
            "created_at",
            "updated_at",
            "closed_at",
            "assignee",
            "parent_id",
        ],
    )
