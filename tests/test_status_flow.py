import random
from datetime import UTC, datetime, timedelta

import pandas as pd

from beads_app.analytics.metrics.status_flow import (
    build_interval_frame,
    build_timelines,
    check_partition,
    reconstruct_timeline,
    seed_events_from_issue,
)
from beads_app.core.models import Event, EventKind, Issue, IssueStatus, IssueType, Snapshot

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def _at(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)


def _created(hours=0.0, seq=0, issue_id="A"):
    return Event(issue_id, EventKind.CREATED, _at(hours), sequence=seq)


def _changed(hours, to, frm=None, seq=0, issue_id="A"):
    return Event(issue_id, EventKind.STATUS_CHANGED, _at(hours), sequence=seq, from_status=frm, to_status=to)


def _statuses(timeline):
    return [(i.status, i.start, i.end) for i in timeline.intervals]


def test_simple_lifecycle():
    events = [
        _created(0),
        _changed(1, IssueStatus.IN_PROGRESS, IssueStatus.OPEN, seq=1),
        _changed(3, IssueStatus.CLOSED, IssueStatus.IN_PROGRESS, seq=2),
    ]
    timeline = reconstruct_timeline("A", events)
    assert _statuses(timeline) == [
        (IssueStatus.OPEN, _at(0), _at(1)),
        (IssueStatus.IN_PROGRESS, _at(1), _at(3)),
        (IssueStatus.CLOSED, _at(3), None),
    ]
    assert timeline.first_closed_at == _at(3)
    assert timeline.current_status is IssueStatus.CLOSED
    assert timeline.inconsistencies == 0


def test_unsorted_input_is_sorted():
    events = [
        _changed(3, IssueStatus.CLOSED, seq=2),
        _created(0),
        _changed(1, IssueStatus.IN_PROGRESS, seq=1),
    ]
    timeline = reconstruct_timeline("A", events)
    assert [i.status for i in timeline.intervals] == [IssueStatus.OPEN, IssueStatus.IN_PROGRESS, IssueStatus.CLOSED]


def test_same_timestamp_uses_source_order():
    events = [
        _changed(2, IssueStatus.CLOSED, seq=2),
        _changed(2, IssueStatus.IN_PROGRESS, seq=1),
        _created(0),
    ]
    timeline = reconstruct_timeline("A", events)
    # The zero-length in_progress stint leaves no interval behind.
    assert _statuses(timeline) == [
        (IssueStatus.OPEN, _at(0), _at(2)),
        (IssueStatus.CLOSED, _at(2), None),
    ]


def test_from_mismatch_trusts_target(caplog):
    events = [_created(0), _changed(1, IssueStatus.CLOSED, IssueStatus.BLOCKED, seq=1)]
    timeline = reconstruct_timeline("A", events)
    assert [i.status for i in timeline.intervals] == [IssueStatus.OPEN, IssueStatus.CLOSED]
    assert timeline.inconsistencies == 1
    assert "Inconsistent history for A" in caplog.text


def test_missing_created_seeds_from_earliest_event():
    events = [_changed(5, IssueStatus.CLOSED, seq=1), _changed(2, IssueStatus.IN_PROGRESS, seq=0)]
    timeline = reconstruct_timeline("A", events)
    assert timeline.created_at == _at(2)
    assert _statuses(timeline) == [
        (IssueStatus.IN_PROGRESS, _at(2), _at(5)),
        (IssueStatus.CLOSED, _at(5), None),
    ]


def test_missing_everything_uses_fallback():
    timeline = reconstruct_timeline("A", [], fallback_created=_at(0))
    assert _statuses(timeline) == [(IssueStatus.OPEN, _at(0), None)]
    assert reconstruct_timeline("A", []).intervals == ()


def test_deleted_closes_timeline_and_ignores_later_events():
    events = [
        _created(0),
        _changed(1, IssueStatus.IN_PROGRESS, seq=1),
        Event("A", EventKind.DELETED, _at(2), sequence=2),
        _changed(3, IssueStatus.CLOSED, seq=3),
    ]
    timeline = reconstruct_timeline("A", events)
    assert timeline.deleted_at == _at(2)
    assert _statuses(timeline) == [
        (IssueStatus.OPEN, _at(0), _at(1)),
        (IssueStatus.IN_PROGRESS, _at(1), _at(2)),
    ]
    assert check_partition(timeline, _at(10)) == []


def test_events_before_creation_are_clamped():
    events = [_created(2), _changed(1, IssueStatus.IN_PROGRESS, seq=1), _changed(4, IssueStatus.CLOSED, seq=2)]
    timeline = reconstruct_timeline("A", events)
    assert timeline.created_at == _at(2)
    assert timeline.intervals[0].status is IssueStatus.IN_PROGRESS
    assert check_partition(timeline, _at(10)) == []


def test_other_events_do_not_change_status():
    events = [_created(0), Event("A", EventKind.OTHER, _at(1), sequence=1, raw_kind="commented")]
    timeline = reconstruct_timeline("A", events)
    assert _statuses(timeline) == [(IssueStatus.OPEN, _at(0), None)]


def test_random_histories_partition_lifetime():
    rng = random.Random(20240101)
    statuses = [s for s in IssueStatus if s is not IssueStatus.TOMBSTONE]
    for _ in range(200):
        events = [_created(0)]
        for seq in range(1, rng.randint(1, 12)):
            events.append(
                _changed(
                    rng.randint(0, 48) / 2,
                    rng.choice(statuses),
                    rng.choice(statuses + [None]),
                    seq=seq,
                )
            )
        if rng.random() < 0.2:
            events.append(Event("A", EventKind.DELETED, _at(rng.randint(0, 48) / 2), sequence=99))
        rng.shuffle(events)
        timeline = reconstruct_timeline("A", events)
        assert check_partition(timeline, _at(100)) == []
        for prev, nxt in zip(timeline.intervals, timeline.intervals[1:]):
            assert prev.status is not nxt.status


def test_seed_events_for_closed_issue():
    issue = Issue(
        id="A",
        title="A",
        issue_type=IssueType.TASK,
        status=IssueStatus.CLOSED,
        priority=2,
        created_at=_at(0),
        closed_at=_at(5),
    )
    events = seed_events_from_issue(issue)
    assert [e.kind for e in events] == [EventKind.CREATED, EventKind.STATUS_CHANGED]
    assert events[1].to_status is IssueStatus.CLOSED
    assert events[1].timestamp == _at(5)


def test_build_timelines_covers_issues_without_history():
    issues = (
        Issue("A", "A", IssueType.TASK, IssueStatus.OPEN, 2, _at(0)),
        Issue("B", "B", IssueType.BUG, IssueStatus.CLOSED, 2, _at(1), closed_at=_at(2)),
    )
    events = (_created(0, issue_id="A"), _changed(3, IssueStatus.IN_PROGRESS, issue_id="A", seq=1))
    snapshot = Snapshot(issues, events, (), "fp", _at(10))
    timelines = build_timelines(snapshot)
    assert sorted(timelines) == ["A", "B"]
    assert timelines["A"].current_status is IssueStatus.IN_PROGRESS
    assert timelines["B"].first_closed_at == _at(2)


def test_interval_frame_clips_at_now():
    events = [_created(0), _changed(1, IssueStatus.IN_PROGRESS, seq=1), _changed(30, IssueStatus.CLOSED, seq=2)]
    timeline = reconstruct_timeline("A", events)
    frame = build_interval_frame([timeline], _at(5))
    assert list(frame["status"]) == ["open", "in_progress"]
    assert frame["duration_hours"].tolist() == [1.0, 4.0]
    assert frame["end"].iloc[-1] == pd.Timestamp(_at(5))


def test_interval_frame_empty_has_columns():
    frame = build_interval_frame([], _at(5))
    assert frame.empty
    assert list(frame.columns) == ["issue_id", "status", "start", "end", "duration_hours"]
