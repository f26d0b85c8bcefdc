from datetime import UTC, date, datetime, timedelta

import pytest

from beads_app.analytics.metrics.delivery import MetricsWindow, compute_metrics
from beads_app.analytics.metrics.status_flow import reconstruct_timeline
from beads_app.core.errors import ComputationError
from beads_app.core.models import Event, EventKind, IssueStatus, IssueTimeline, StatusInterval

DAY = datetime(2024, 1, 1, tzinfo=UTC)  # a Monday


def _at(hours: float) -> datetime:
    return DAY + timedelta(hours=hours)


def _timeline(issue_id, created, *changes):
    events = [Event(issue_id, EventKind.CREATED, _at(created))]
    for seq, (hours, status) in enumerate(changes, start=1):
        events.append(Event(issue_id, EventKind.STATUS_CHANGED, _at(hours), sequence=seq, to_status=status))
    return reconstruct_timeline(issue_id, events)


def _sample_timelines():
    a = _timeline("A", 9, (10, IssueStatus.IN_PROGRESS), (12, IssueStatus.CLOSED))
    b = _timeline("B", 9.5, (11, IssueStatus.CLOSED))
    return [a, b]


def _one_day_window():
    return MetricsWindow(DAY, DAY + timedelta(days=1))


def test_window_validation_and_localization():
    with pytest.raises(ValueError):
        MetricsWindow(DAY, DAY)
    window = MetricsWindow(datetime(2024, 1, 1), datetime(2024, 1, 2), "America/Santiago")
    assert window.start.utcoffset() == timedelta(hours=-3)
    assert window.local_days() == [date(2024, 1, 1)]


def test_last_days_window():
    window = MetricsWindow.last_days(7, now=_at(12))
    assert window.end == _at(12)
    assert window.end - window.start == timedelta(days=7)
    assert len(window.local_days()) == 8


def test_scenario_lead_cycle_and_throughput():
    metrics = compute_metrics(_sample_timelines(), _one_day_window())
    assert metrics.lead_time_for("A") == pytest.approx(3.0)
    assert metrics.lead_time_for("B") == pytest.approx(1.5)
    assert metrics.cycle_time_for("A") == pytest.approx(2.0)
    assert metrics.cycle_time_for("B") is None
    assert metrics.total_throughput == 2
    assert metrics.throughput_on(date(2024, 1, 1)) == 2
    assert metrics.throughput_weekly == (("2024-01-01", 2),)
    assert metrics.lead_time.count == 2
    assert metrics.lead_time.mean == pytest.approx(2.25)
    assert metrics.lead_time.percentile(50) == pytest.approx(3.0)
    assert metrics.lead_time.percentile(100) == pytest.approx(3.0)
    assert metrics.cycle_time.count == 1
    assert metrics.created_daily == (("2024-01-01", 2),)


def test_lead_time_ignores_intermediate_changes():
    timeline = _timeline(
        "C",
        1,
        (2, IssueStatus.IN_PROGRESS),
        (3, IssueStatus.BLOCKED),
        (5, IssueStatus.IN_PROGRESS),
        (8, IssueStatus.CLOSED),
    )
    metrics = compute_metrics([timeline], _one_day_window())
    assert metrics.lead_time_for("C") == pytest.approx(7.0)
    assert metrics.cycle_time_for("C") == pytest.approx(4.0)


def test_reopened_issue_counts_once_at_final_closure():
    timeline = _timeline(
        "D",
        1,
        (2, IssueStatus.CLOSED),
        (3, IssueStatus.OPEN),
        (30, IssueStatus.CLOSED),
    )
    window = MetricsWindow(DAY, DAY + timedelta(days=2))
    metrics = compute_metrics([timeline], window)
    assert metrics.lead_time_for("D") == pytest.approx(1.0)
    assert metrics.throughput_on("2024-01-01") == 0
    assert metrics.throughput_on("2024-01-02") == 1


def test_reopened_after_window_end_still_counts():
    timeline = _timeline("E", 1, (2, IssueStatus.CLOSED), (30, IssueStatus.OPEN))
    metrics = compute_metrics([timeline], _one_day_window())
    assert metrics.total_throughput == 1


def test_unfinished_issue_contributes_no_samples():
    timeline = _timeline("F", 1, (2, IssueStatus.IN_PROGRESS))
    metrics = compute_metrics([timeline], _one_day_window())
    assert metrics.lead_time.count == 0
    assert metrics.cycle_time.count == 0
    assert metrics.total_throughput == 0


def test_empty_window_is_zero_filled():
    window = MetricsWindow(DAY + timedelta(days=10), DAY + timedelta(days=13))
    metrics = compute_metrics(_sample_timelines(), window)
    assert metrics.lead_time.count == 0
    assert metrics.lead_time.percentile(90) == 0.0
    assert metrics.throughput_daily == (("2024-01-11", 0), ("2024-01-12", 0), ("2024-01-13", 0))
    assert metrics.activity.total == 0


def test_output_is_byte_identical_across_runs():
    window = _one_day_window()
    first = compute_metrics(_sample_timelines(), window, fingerprint="abc").to_json()
    second = compute_metrics(list(reversed(_sample_timelines())), window, fingerprint="abc").to_json()
    assert first == second


def test_to_dict_shape():
    payload = compute_metrics(_sample_timelines(), _one_day_window()).to_dict()
    assert set(payload) >= {"window", "lead_time_hours", "cycle_time_hours", "throughput", "activity", "stale"}
    assert payload["lead_time_hours"]["percentiles"] == {"p50": 3.0, "p90": 3.0, "p100": 3.0}
    assert payload["throughput"]["day"] == [{"period": "2024-01-01", "count": 2}]
    assert payload["lead_time_daily"] == [{"period": "2024-01-01", "p50": 3.0, "p90": 3.0, "p100": 3.0}]
    assert payload["cycle_time_daily"] == [{"period": "2024-01-01", "p50": 2.0, "p90": 2.0, "p100": 2.0}]


def test_lead_and_cycle_percentiles_per_close_day():
    timelines = _sample_timelines() + [
        _timeline("E", 0, (10, IssueStatus.CLOSED)),
        _timeline("C", 20, (22, IssueStatus.IN_PROGRESS), (30, IssueStatus.CLOSED)),
    ]
    metrics = compute_metrics(timelines, MetricsWindow(DAY, DAY + timedelta(days=2)))
    assert metrics.lead_time_daily == (
        ("2024-01-01", ((50, 3.0), (90, 10.0), (100, 10.0))),
        ("2024-01-02", ((50, 10.0), (90, 10.0), (100, 10.0))),
    )
    assert metrics.cycle_time_daily == (
        ("2024-01-01", ((50, 2.0), (90, 2.0), (100, 2.0))),
        ("2024-01-02", ((50, 8.0), (90, 8.0), (100, 8.0))),
    )


def test_close_day_follows_window_timezone():
    late = _timeline("L", 20, (26, IssueStatus.CLOSED))
    window = MetricsWindow(DAY, DAY + timedelta(days=2), "America/Santiago")
    metrics = compute_metrics([late], window)
    assert metrics.lead_time_daily == (("2024-01-01", ((50, 6.0), (90, 6.0), (100, 6.0))),)
    assert metrics.cycle_time_daily == ()


def _corrupt_timeline():
    return IssueTimeline("X", created_at=_at(5), intervals=(StatusInterval(IssueStatus.CLOSED, _at(1), None),))


def test_negative_duration_raises_when_strict():
    with pytest.raises(ComputationError):
        compute_metrics([_corrupt_timeline()], _one_day_window(), strict=True)


def test_negative_duration_clamped_and_logged(caplog):
    metrics = compute_metrics([_corrupt_timeline()], _one_day_window())
    assert metrics.lead_time_for("X") == 0.0
    assert "Negative lead time of X" in caplog.text
