"""Activity density metrics (day-of-week x hour-of-day heat map)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import pandas as pd

from beads_app.core.config import WEEKDAY_LABELS
from beads_app.core.models import Event

HOURS_PER_DAY = 24


@dataclass(frozen=True, slots=True)
class ActivityHistogram:
    """Event counts indexed ``counts[day][hour]`` with Monday as day 0."""

    counts: tuple[tuple[int, ...], ...]

    @classmethod
    def zeros(cls) -> ActivityHistogram:
        return cls(tuple(tuple(0 for _ in range(HOURS_PER_DAY)) for _ in WEEKDAY_LABELS))

    def count(self, day: int | str, hour: int) -> int:
        if isinstance(day, str):
            day = WEEKDAY_LABELS.index(day[:3].title())
        return self.counts[day][hour]

    @property
    def total(self) -> int:
        return sum(sum(row) for row in self.counts)

    def to_dict(self) -> dict:
        return {
            "days": list(WEEKDAY_LABELS),
            "hours": list(range(HOURS_PER_DAY)),
            "counts": [list(row) for row in self.counts],
            "total": self.total,
        }


def build_activity_histogram(events: Iterable[Event], start: datetime, end: datetime, tz) -> ActivityHistogram:
    """Count every event in [start, end) by local (weekday, hour).

    Unlike lead and cycle time this includes every event kind, deletions and
    unrecognized kinds alike.
    """
    stamps = pd.Series([e.timestamp for e in events], dtype="object")
    if stamps.empty:
        return ActivityHistogram.zeros()
    stamps = pd.to_datetime(stamps, utc=True)
    in_window = stamps[(stamps >= pd.Timestamp(start)) & (stamps < pd.Timestamp(end))]
    if in_window.empty:
        return ActivityHistogram.zeros()

    local = in_window.dt.tz_convert(tz)
    grid = (
        local.groupby([local.dt.dayofweek.rename("day"), local.dt.hour.rename("hour")])
        .size()
        .unstack(fill_value=0)
        .reindex(index=range(len(WEEKDAY_LABELS)), columns=range(HOURS_PER_DAY), fill_value=0)
    )
    return ActivityHistogram(tuple(tuple(int(n) for n in row) for row in grid.to_numpy().tolist()))
