"""Duration binning and distribution utilities.

This module provides functions for bucketing lead and cycle time samples
into human-readable histogram buckets and summarizing them with
percentiles.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd

from beads_app.core.config import DISTRIBUTION_PERCENTILES, DISTRIBUTION_TARGET_BINS


@dataclass(frozen=True, slots=True)
class DurationDistribution:
    count: int = 0
    mean: float = 0.0
    percentiles: tuple[tuple[int, float], ...] = ()
    buckets: tuple[tuple[str, int], ...] = ()

    def percentile(self, p: int) -> float:
        for key, value in self.percentiles:
            if key == p:
                return value
        raise KeyError(p)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "mean": round(self.mean, 4),
            "percentiles": {f"p{p}": round(v, 4) for p, v in self.percentiles},
            "buckets": [{"label": label, "count": n} for label, n in self.buckets],
        }


def nearest_rank_percentile(sorted_values: Sequence[float], p: float) -> float:
    """Percentile by rounded rank over an ascending sequence (0.0 when empty).

    >>> nearest_rank_percentile([1.0, 2.0, 3.0, 4.0], 50)
    3.0
    >>> nearest_rank_percentile([1.0, 2.0, 3.0, 4.0], 100)
    4.0
    """
    if not sorted_values:
        return 0.0
    # Half-up rounding of the rank, not banker's rounding
    idx = math.floor((len(sorted_values) - 1) * p / 100.0 + 0.5)
    return float(sorted_values[min(idx, len(sorted_values) - 1)])


def bucket_step(max_hours: float, *, target_bins: int = DISTRIBUTION_TARGET_BINS, min_step: float = 1.0) -> float:
    """Whole-hour bucket width so that [0, max_hours] spans about ``target_bins`` buckets."""
    if not max_hours > 0:
        return float(min_step)
    return float(max(math.ceil(max_hours / max(target_bins, 1)), min_step))


def bucket_edges(
    values: Sequence[float],
    *,
    target_bins: int = DISTRIBUTION_TARGET_BINS,
    min_step: float = 1.0,
) -> tuple[list[float], list[str]]:
    """Left-closed bucket edges starting at zero, plus one open-ended bucket.

    Parameters
    ----------
    values : Sequence[float]
        Non-negative durations in hours.
    target_bins : int
        Desired number of finite buckets.
    min_step : float
        Smallest bucket width in hours.

    Returns
    -------
    tuple[list[float], list[str]]
        Edges (ending with ``inf``) and one label per bucket.

    Examples
    --------
    >>> bucket_edges([0.5, 3.0, 7.5], target_bins=4)[1]
    ['0–<2h', '2–<4h', '4–<6h', '6–<8h', '≥8h']
    """
    top = max(values, default=0.0)
    step = bucket_step(top, target_bins=target_bins, min_step=min_step)
    finite = [step * n for n in range(max(math.ceil(top / step), 1) + 1)]
    labels = [f"{lo:g}–<{hi:g}h" for lo, hi in zip(finite, finite[1:])]
    labels.append(f"≥{finite[-1]:g}h")
    return finite + [math.inf], labels


def summarize_durations(values: Sequence[float]) -> DurationDistribution:
    """Count, mean, percentiles and bucket counts for duration samples (hours)."""
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return DurationDistribution(percentiles=tuple((p, 0.0) for p in DISTRIBUTION_PERCENTILES))

    series = pd.Series(ordered, dtype="float64")
    edges, labels = bucket_edges(ordered)
    binned = pd.cut(series, bins=edges, labels=labels, right=False)
    counts = binned.value_counts(sort=False).reindex(labels, fill_value=0)

    return DurationDistribution(
        count=len(ordered),
        mean=float(series.mean()),
        percentiles=tuple((p, nearest_rank_percentile(ordered, p)) for p in DISTRIBUTION_PERCENTILES),
        buckets=tuple((str(label), int(n)) for label, n in counts.items()),
    )
