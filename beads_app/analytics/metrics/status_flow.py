"""Status flow reconstruction and duration analysis utilities.

This module replays each issue's lifecycle events into an ordered sequence
of status intervals and exposes helpers to flatten those timelines into
frames for the aggregators.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

import pandas as pd

from beads_app.core.events import group_events_by_issue
from beads_app.core.models import (
    Event,
    EventKind,
    Issue,
    IssueStatus,
    IssueTimeline,
    Snapshot,
    StatusInterval,
)

logger = logging.getLogger(__name__)

INTERVAL_FRAME_COLUMNS = ("issue_id", "status", "start", "end", "duration_hours")


def reconstruct_timeline(
    issue_id: str,
    events: Sequence[Event],
    *,
    fallback_created: datetime | None = None,
) -> IssueTimeline:
    """Replay one issue's events into non-overlapping status intervals.

    Parameters
    ----------
    issue_id : str
        Issue the events belong to.
    events : Sequence[Event]
        Events for the issue in any order. They are sorted by timestamp with
        the source record order as tie-break; the source ordering is not
        trusted.
    fallback_created : datetime, optional
        Seed time used when there is neither a Created event nor any other
        event (typically the snapshot's ``created_at``).

    Returns
    -------
    IssueTimeline
        Intervals partitioning [created, deleted-or-open-ended]. A status
        change whose ``from`` disagrees with the tracked status is trusted
        and counted in ``inconsistencies``.
    """
    ordered = sorted(events, key=lambda e: (e.timestamp, e.sequence))

    created_at: datetime | None = None
    for event in ordered:
        if event.kind is EventKind.CREATED:
            created_at = event.timestamp
            break
    if created_at is None:
        created_at = ordered[0].timestamp if ordered else fallback_created
    if created_at is None:
        return IssueTimeline(issue_id=issue_id, created_at=None)

    intervals: list[StatusInterval] = []
    current_status = IssueStatus.OPEN
    current_start = created_at
    deleted_at: datetime | None = None
    inconsistencies = 0

    for event in ordered:
        # Events stamped before creation are clamped onto the seed.
        at = max(event.timestamp, created_at)
        if event.kind is EventKind.DELETED:
            deleted_at = at
            break
        if event.kind is not EventKind.STATUS_CHANGED or event.to_status is None:
            continue
        if event.from_status is not None and event.from_status is not current_status:
            inconsistencies += 1
            logger.warning(
                "Inconsistent history for %s at %s: expected from=%s, got from=%s; trusting to=%s",
                issue_id,
                at.isoformat(),
                current_status.value,
                event.from_status.value,
                event.to_status.value,
            )
        if event.to_status is current_status:
            continue
        if at > current_start:
            intervals.append(StatusInterval(current_status, current_start, at))
            current_start = at
        elif intervals and intervals[-1].status is event.to_status:
            # Zero-length detour: resume the previous interval.
            current_start = intervals.pop().start
        current_status = event.to_status

    if deleted_at is not None:
        if deleted_at > current_start or not intervals:
            intervals.append(StatusInterval(current_status, current_start, deleted_at))
    else:
        intervals.append(StatusInterval(current_status, current_start, None))

    return IssueTimeline(
        issue_id=issue_id,
        created_at=created_at,
        intervals=tuple(intervals),
        deleted_at=deleted_at,
        inconsistencies=inconsistencies,
    )


def seed_events_from_issue(issue: Issue) -> list[Event]:
    """Synthesize a minimal history for a snapshot issue with no events.

    Activity logs can be trimmed while the export still lists the issue; the
    synthesized Created (and, when the issue is no longer open, a single
    status change) keeps such issues visible to lead time and throughput.
    """
    if issue.created_at is None:
        return []
    events = [Event(issue.id, EventKind.CREATED, issue.created_at, sequence=-2, raw_kind="snapshot")]
    if issue.status is IssueStatus.OPEN:
        return events
    if issue.status is IssueStatus.CLOSED:
        changed_at = issue.closed_at or issue.updated_at
    else:
        changed_at = issue.updated_at
    if changed_at is None:
        return events
    if issue.status is IssueStatus.TOMBSTONE:
        events.append(Event(issue.id, EventKind.DELETED, changed_at, sequence=-1, raw_kind="snapshot"))
        return events
    events.append(
        Event(
            issue.id,
            EventKind.STATUS_CHANGED,
            changed_at,
            sequence=-1,
            from_status=IssueStatus.OPEN,
            to_status=issue.status,
            raw_kind="snapshot",
        )
    )
    return events


def build_timelines(snapshot: Snapshot) -> dict[str, IssueTimeline]:
    """One timeline per issue id known to the snapshot or its event log."""
    grouped = group_events_by_issue(snapshot.events)
    by_id = {issue.id: issue for issue in snapshot.issues}

    timelines: dict[str, IssueTimeline] = {}
    for issue_id in sorted(set(grouped) | set(by_id)):
        issue = by_id.get(issue_id)
        events = grouped.get(issue_id)
        if not events and issue is not None:
            events = seed_events_from_issue(issue)
            logger.debug("No activity for %s; seeded %s events from snapshot", issue_id, len(events))
        timeline = reconstruct_timeline(
            issue_id,
            events or [],
            fallback_created=issue.created_at if issue is not None else None,
        )
        if timeline.created_at is None:
            logger.debug("Skipping %s: no creation time and no events", issue_id)
            continue
        timelines[issue_id] = timeline
    return timelines


def check_partition(timeline: IssueTimeline, now: datetime) -> list[str]:
    """Return the partition invariant violations of a timeline (empty if valid)."""
    problems: list[str] = []
    intervals = timeline.intervals
    if not intervals:
        return problems
    if intervals[0].start != timeline.created_at:
        problems.append("first interval does not start at creation")
    for prev, nxt in zip(intervals, intervals[1:]):
        if prev.end is None:
            problems.append(f"open-ended interval before {nxt.start.isoformat()}")
        elif prev.end != nxt.start:
            problems.append(f"gap or overlap between {prev.end.isoformat()} and {nxt.start.isoformat()}")
    last = intervals[-1]
    if timeline.deleted_at is not None and last.end != timeline.deleted_at:
        problems.append("last interval does not end at deletion")
    if timeline.deleted_at is None and last.end is not None:
        problems.append("last interval of a live issue is closed")
    for interval in intervals:
        if interval.duration_seconds(now) < 0:
            problems.append(f"negative {interval.status.value} interval at {interval.start.isoformat()}")
    return problems


def build_interval_frame(timelines: Iterable[IssueTimeline], now: datetime) -> pd.DataFrame:
    """Build a long-form DataFrame with one row per status interval, as of ``now``.

    Intervals starting at or after ``now`` are left out and later ends
    (including open-ended intervals) are cut at ``now``.

    Returns
    -------
    pd.DataFrame
        Columns: issue_id, status, start, end, duration_hours. Empty (with
        those columns) when there are no intervals.
    """
    records: list[dict[str, object]] = []
    for timeline in timelines:
        for interval in timeline.intervals:
            if interval.start >= now:
                continue
            end = now if interval.end is None or interval.end > now else interval.end
            records.append(
                {
                    "issue_id": timeline.issue_id,
                    "status": interval.status.value,
                    "start": interval.start,
                    "end": end,
                    "duration_hours": (end - interval.start).total_seconds() / 3600.0,
                }
            )
    return pd.DataFrame(records, columns=list(INTERVAL_FRAME_COLUMNS))
