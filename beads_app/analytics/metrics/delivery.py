"""Delivery metrics: lead time, cycle time, throughput (pure functions).

Everything here is computed from scratch from reconstructed timelines; the
same inputs always serialize to the same bytes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import pandas as pd
import pytz

from beads_app.core.config import DEFAULT_WINDOW_DAYS, DISTRIBUTION_PERCENTILES, TIMEZONE
from beads_app.core.errors import ComputationError
from beads_app.core.mappers import issues_to_dataframe
from beads_app.core.models import Event, Issue, IssueStatus, IssueTimeline

from .activity import ActivityHistogram, build_activity_histogram
from .binning import DurationDistribution, nearest_rank_percentile, summarize_durations
from .status_flow import build_interval_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MetricsWindow:
    """Half-open reporting window [start, end); ``end`` doubles as "now"."""

    start: datetime
    end: datetime
    timezone: str = TIMEZONE

    def __post_init__(self):
        tz = pytz.timezone(self.timezone)
        for name in ("start", "end"):
            value = getattr(self, name)
            if value.tzinfo is None:
                object.__setattr__(self, name, tz.localize(value))
        if self.end <= self.start:
            raise ValueError(f"metrics window end {self.end} is not after start {self.start}")

    @classmethod
    def last_days(
        cls, days: int = DEFAULT_WINDOW_DAYS, *, now: datetime | None = None, timezone: str = TIMEZONE
    ) -> MetricsWindow:
        end = now or datetime.now(tz=pytz.UTC)
        return cls(end - timedelta(days=days), end, timezone)

    @property
    def tzinfo(self):
        return pytz.timezone(self.timezone)

    def contains(self, ts: datetime | None) -> bool:
        return ts is not None and self.start <= ts < self.end

    def local_days(self) -> list[date]:
        first = self.start.astimezone(self.tzinfo).date()
        last = (self.end - timedelta(microseconds=1)).astimezone(self.tzinfo).date()
        return [first + timedelta(days=n) for n in range((last - first).days + 1)]

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "timezone": self.timezone}


def _daily_row(period: str, values: tuple[tuple[int, float], ...]) -> dict:
    return {"period": period, **{f"p{p}": round(v, 4) for p, v in values}}


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    window: MetricsWindow
    lead_time: DurationDistribution
    cycle_time: DurationDistribution
    lead_time_samples: tuple[tuple[str, float], ...]
    cycle_time_samples: tuple[tuple[str, float], ...]
    throughput_daily: tuple[tuple[str, int], ...]
    throughput_weekly: tuple[tuple[str, int], ...]
    created_daily: tuple[tuple[str, int], ...]
    activity: ActivityHistogram
    lead_time_daily: tuple[tuple[str, tuple[tuple[int, float], ...]], ...] = ()
    cycle_time_daily: tuple[tuple[str, tuple[tuple[int, float], ...]], ...] = ()
    wip_count: int = 0
    blocked_count: int = 0
    stale: bool = False
    fingerprint: str = ""

    def lead_time_for(self, issue_id: str) -> float | None:
        return dict(self.lead_time_samples).get(issue_id)

    def cycle_time_for(self, issue_id: str) -> float | None:
        return dict(self.cycle_time_samples).get(issue_id)

    def throughput_on(self, day: date | str) -> int:
        key = day.isoformat() if isinstance(day, date) else day
        return dict(self.throughput_daily).get(key, 0)

    @property
    def total_throughput(self) -> int:
        return sum(n for _, n in self.throughput_daily)

    def to_dict(self) -> dict:
        return {
            "window": self.window.to_dict(),
            "lead_time_hours": self.lead_time.to_dict(),
            "cycle_time_hours": self.cycle_time.to_dict(),
            "lead_time_samples": [{"id": i, "hours": round(h, 4)} for i, h in self.lead_time_samples],
            "cycle_time_samples": [{"id": i, "hours": round(h, 4)} for i, h in self.cycle_time_samples],
            "throughput": {
                "day": [{"period": p, "count": n} for p, n in self.throughput_daily],
                "week": [{"period": p, "count": n} for p, n in self.throughput_weekly],
            },
            "created": [{"period": p, "count": n} for p, n in self.created_daily],
            "lead_time_daily": [_daily_row(p, values) for p, values in self.lead_time_daily],
            "cycle_time_daily": [_daily_row(p, values) for p, values in self.cycle_time_daily],
            "activity": self.activity.to_dict(),
            "wip_count": self.wip_count,
            "blocked_count": self.blocked_count,
            "stale": self.stale,
            "fingerprint": self.fingerprint,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def clamp_non_negative(hours: float, what: str, *, strict: bool) -> float:
    """Guard against negative durations caused by corrupt histories."""
    if hours >= 0:
        return hours
    if strict:
        raise ComputationError(f"negative {what}: {hours:.4f}h")
    logger.error("Negative %s (%.4fh); clamping to zero", what, hours)
    return 0.0


def _count_by_day(stamps: Iterable[datetime], window: MetricsWindow) -> tuple[tuple[str, int], ...]:
    days = window.local_days()
    series = pd.Series(list(stamps), dtype="object")
    if series.empty:
        counts = pd.Series(0, index=days)
    else:
        local = pd.to_datetime(series, utc=True).dt.tz_convert(window.tzinfo)
        counts = local.dt.date.value_counts().reindex(days, fill_value=0)
    return tuple((day.isoformat(), int(n)) for day, n in counts.items())


def _roll_up_weeks(daily: tuple[tuple[str, int], ...]) -> tuple[tuple[str, int], ...]:
    """Sum daily counts into weeks keyed by their Monday."""
    if not daily:
        return ()
    frame = pd.DataFrame(daily, columns=["day", "count"])
    day = pd.to_datetime(frame["day"])
    frame["week"] = (day - pd.to_timedelta(day.dt.dayofweek, unit="D")).dt.date
    weekly = frame.groupby("week", sort=True)["count"].sum()
    return tuple((week.isoformat(), int(n)) for week, n in weekly.items())


def daily_percentiles(
    samples: Iterable[tuple[str, float]], closed_at: dict[str, datetime], window: MetricsWindow
) -> tuple[tuple[str, tuple[tuple[int, float], ...]], ...]:
    """p50/p90/p100 of the samples grouped by the local day each issue closed.

    Days without samples are left out.
    """
    frame = pd.DataFrame(list(samples), columns=["issue_id", "hours"])
    if frame.empty:
        return ()
    stamps = pd.to_datetime(frame["issue_id"].map(closed_at), utc=True)
    frame["day"] = stamps.dt.tz_convert(window.tzinfo).dt.date
    rows = []
    for day, group in frame.groupby("day", sort=True):
        values = sorted(group["hours"].tolist())
        percentiles = tuple((p, nearest_rank_percentile(values, p)) for p in DISTRIBUTION_PERCENTILES)
        rows.append((day.isoformat(), percentiles))
    return tuple(rows)


def compute_lead_times(
    timelines: Iterable[IssueTimeline], window: MetricsWindow, *, strict: bool = False
) -> list[tuple[str, float]]:
    """Lead time in hours for issues whose first closure falls in the window."""
    samples: list[tuple[str, float]] = []
    for timeline in timelines:
        first_closed = timeline.first_closed_at
        if not window.contains(first_closed) or timeline.created_at is None:
            continue
        hours = (first_closed - timeline.created_at).total_seconds() / 3600.0
        hours = clamp_non_negative(hours, f"lead time of {timeline.issue_id}", strict=strict)
        samples.append((timeline.issue_id, hours))
    return sorted(samples)


def compute_cycle_times(
    timelines: Iterable[IssueTimeline], window: MetricsWindow, *, strict: bool = False
) -> list[tuple[str, float]]:
    """Summed in-progress hours for issues first closed in the window.

    Issues that never passed through in_progress contribute no sample: cycle
    time is undefined without a measured in-progress duration.
    """
    closed = [t for t in timelines if window.contains(t.first_closed_at)]
    frame = build_interval_frame(closed, window.end)
    in_progress = frame[frame["status"] == IssueStatus.IN_PROGRESS.value]
    if in_progress.empty:
        return []
    totals = in_progress.groupby("issue_id", sort=True)["duration_hours"].sum()
    return [
        (issue_id, clamp_non_negative(float(hours), f"cycle time of {issue_id}", strict=strict))
        for issue_id, hours in totals.items()
    ]


def compute_throughput(timelines: Iterable[IssueTimeline], window: MetricsWindow) -> tuple[tuple[str, int], ...]:
    """Issues whose terminal closed transition lands on each local day of the window."""
    closings = []
    for timeline in timelines:
        closed_at = timeline.terminal_closed_at(as_of=window.end)
        if window.contains(closed_at):
            closings.append(closed_at)
    return _count_by_day(closings, window)


def compute_metrics(
    timelines: Iterable[IssueTimeline],
    window: MetricsWindow,
    *,
    events: Iterable[Event] = (),
    issues: Iterable[Issue] = (),
    strict: bool = False,
    stale: bool = False,
    fingerprint: str = "",
) -> MetricsSnapshot:
    """Aggregate one ``MetricsSnapshot`` for ``window``.

    Parameters
    ----------
    timelines : Iterable[IssueTimeline]
        Reconstructed timelines for every known issue.
    window : MetricsWindow
        Reporting window; its end is the instant open intervals are measured to.
    events : Iterable[Event]
        Full event log, used for the activity heat map.
    issues : Iterable[Issue]
        Current snapshot, used for the WIP and blocked counts.
    strict : bool
        Raise ``ComputationError`` on negative durations instead of clamping.

    Returns
    -------
    MetricsSnapshot
        Zero-filled series when the window holds no samples.
    """
    ordered = sorted(timelines, key=lambda t: t.issue_id)
    lead_samples = compute_lead_times(ordered, window, strict=strict)
    cycle_samples = compute_cycle_times(ordered, window, strict=strict)
    throughput_daily = compute_throughput(ordered, window)
    created_daily = _count_by_day(
        [t.created_at for t in ordered if window.contains(t.created_at)],
        window,
    )
    first_closed = {t.issue_id: t.first_closed_at for t in ordered if t.first_closed_at is not None}

    status_counts = issues_to_dataframe(issues)["status"].value_counts()
    wip_count = int(status_counts.get(IssueStatus.IN_PROGRESS.value, 0))
    blocked_count = int(status_counts.get(IssueStatus.BLOCKED.value, 0))

    snapshot = MetricsSnapshot(
        window=window,
        lead_time=summarize_durations([h for _, h in lead_samples]),
        cycle_time=summarize_durations([h for _, h in cycle_samples]),
        lead_time_samples=tuple(lead_samples),
        cycle_time_samples=tuple(cycle_samples),
        throughput_daily=throughput_daily,
        throughput_weekly=_roll_up_weeks(throughput_daily),
        created_daily=created_daily,
        lead_time_daily=daily_percentiles(lead_samples, first_closed, window),
        cycle_time_daily=daily_percentiles(cycle_samples, first_closed, window),
        activity=build_activity_histogram(events, window.start, window.end, window.tzinfo),
        wip_count=wip_count,
        blocked_count=blocked_count,
        stale=stale,
        fingerprint=fingerprint,
    )
    logger.debug(
        "Computed metrics for %s..%s: %s lead samples, %s cycle samples, throughput %s",
        window.start.isoformat(),
        window.end.isoformat(),
        len(lead_samples),
        len(cycle_samples),
        snapshot.total_throughput,
    )
    return snapshot
