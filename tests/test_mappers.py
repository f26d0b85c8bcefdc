from datetime import UTC, datetime

import pytest

from beads_app.core.errors import MalformedRecord
from beads_app.core.mappers import (
    collect_dependencies,
    issues_to_dataframe,
    map_issue,
    map_issues,
    map_priority,
    parse_timestamp,
)
from beads_app.core.models import IssueStatus, IssueType
from beads_app.core.status import is_terminal_status, normalize_issue_type, normalize_status


def _raw_issue(**overrides):
    raw = {
        "id": "nacre-1.2",
        "title": "Parse export",
        "status": "in_progress",
        "issue_type": "feature",
        "priority": 1,
        "created_at": "2024-01-01T09:00:00Z",
        "updated_at": "2024-01-02T09:00:00+02:00",
        "dependencies": [
            {"issue_id": "nacre-1.2", "depends_on_id": "nacre-3", "type": "blocks"},
        ],
    }
    raw.update(overrides)
    return raw


def test_status_aliases():
    assert normalize_status("In Progress") is IssueStatus.IN_PROGRESS
    assert normalize_status("DONE") is IssueStatus.CLOSED
    assert normalize_status("tombstone") is IssueStatus.TOMBSTONE
    assert normalize_status("") is None
    assert normalize_status("wontfix") is None


def test_issue_type_defaults_to_task():
    assert normalize_issue_type("merge_request") is IssueType.MERGE_REQUEST
    assert normalize_issue_type("Epic") is IssueType.EPIC
    assert normalize_issue_type(None) is IssueType.TASK
    assert normalize_issue_type("spike") is IssueType.TASK


def test_terminal_statuses():
    assert is_terminal_status("closed")
    assert is_terminal_status(IssueStatus.TOMBSTONE)
    assert not is_terminal_status("blocked")
    assert not is_terminal_status(None)


def test_parse_timestamp_normalizes_to_utc():
    ts = parse_timestamp("2024-01-02T09:00:00+02:00")
    assert ts == datetime(2024, 1, 2, 7, 0, tzinfo=UTC)
    assert parse_timestamp("2024-01-02T09:00:00") == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None


@pytest.mark.parametrize("value", [{"x": 1}, ["2024-01-01", "x"], 1704099600, 3.5, True])
def test_parse_timestamp_rejects_non_string_values(value):
    assert parse_timestamp(value) is None


def test_map_issue_ignores_non_list_labels_and_dependencies(caplog):
    issue = map_issue(_raw_issue(labels="urgent", dependencies={"depends_on_id": "nacre-3"}))
    assert issue.labels == ()
    assert issue.dependencies == ()
    assert "Ignoring non-list labels of nacre-1.2" in caplog.text
    assert "Ignoring non-list dependencies of nacre-1.2" in caplog.text

    issue = map_issue(_raw_issue(labels=7, dependencies=3))
    assert issue.labels == ()
    assert issue.dependencies == ()


def test_map_issues_survives_garbled_timestamps():
    records = [_raw_issue(), _raw_issue(id="nacre-9", created_at={"bogus": 1}, closed_at=["2024-01-01", "x"])]
    issues = map_issues(records)
    assert [i.id for i in issues] == ["nacre-1.2", "nacre-9"]
    assert issues[1].created_at is None
    assert issues[1].closed_at is None


def test_map_priority_variants():
    assert map_priority(0) == 0
    assert map_priority("P3") == 3
    assert map_priority("urgent") == 2
    assert map_priority(None) == 2


def test_map_issue_fields():
    issue = map_issue(_raw_issue())
    assert issue.status is IssueStatus.IN_PROGRESS
    assert issue.issue_type is IssueType.FEATURE
    assert issue.parent_id == "nacre-1"
    assert issue.updated_at == datetime(2024, 1, 2, 7, 0, tzinfo=UTC)
    assert len(issue.dependencies) == 1
    dep = issue.dependencies[0]
    assert (dep.from_id, dep.to_id, dep.kind) == ("nacre-1.2", "nacre-3", "blocks")


def test_map_issue_missing_status_is_open():
    raw = _raw_issue()
    del raw["status"]
    assert map_issue(raw).status is IssueStatus.OPEN


def test_map_issue_rejects_unknown_status():
    with pytest.raises(MalformedRecord):
        map_issue(_raw_issue(status="wontfix"))


def test_map_issue_skips_bad_dependency(caplog):
    issue = map_issue(_raw_issue(dependencies=[{"type": "blocks"}, "junk"]))
    assert issue.dependencies == ()
    assert "Skipping dependency" in caplog.text


def test_map_issues_skips_malformed_and_duplicates(caplog):
    records = [_raw_issue(), {"title": "no id"}, _raw_issue(title="dupe")]
    issues = map_issues(records)
    assert [i.title for i in issues] == ["Parse export"]
    assert "Duplicate issue id" in caplog.text


def test_collect_dependencies_deduplicates():
    issue = map_issue(_raw_issue())
    extra = [
        {"issue_id": "nacre-1.2", "depends_on_id": "nacre-3", "type": "blocks"},
        {"from": "nacre-4", "to": "nacre-1", "kind": "Parent-Child"},
    ]
    deps = collect_dependencies([issue], extra)
    assert [(d.from_id, d.to_id, d.kind) for d in deps] == [
        ("nacre-1.2", "nacre-3", "blocks"),
        ("nacre-4", "nacre-1", "parent-child"),
    ]


def test_issues_to_dataframe_columns():
    df = issues_to_dataframe([map_issue(_raw_issue())])
    assert list(df.columns)[:4] == ["id", "title", "issue_type", "status"]
    assert df.loc[0, "assignee"] == "Unassigned"
    assert issues_to_dataframe([]).empty
