"""Epic roll-ups over the dotted id hierarchy."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import pandas as pd

from beads_app.analytics.graph.index import HierarchyIndex
from beads_app.core.models import IssueType
from beads_app.core.status import is_terminal_status

EPIC_PROGRESS_COLUMNS = ["epic_id", "title", "status", "total", "closed", "percent"]


@dataclass(frozen=True, slots=True)
class EpicProgress:
    epic_id: str
    title: str
    status: str
    total: int
    closed: int
    percent: float

    def to_dict(self) -> dict:
        return asdict(self)


def aggregate_epic_progress(index: HierarchyIndex) -> pd.DataFrame:
    """Closed/total counts of every epic's descendants (the epic itself excluded).

    Epics without children report 0 of 0 and a percent of 0.0.
    """
    rows = []
    for epic_id, epic in index.issues.items():
        if epic.issue_type is not IssueType.EPIC:
            continue
        children = [index.issues[i] for i in index.descendants(epic_id) if i != epic_id]
        closed = sum(1 for child in children if is_terminal_status(child.status))
        rows.append(
            {
                "epic_id": epic_id,
                "title": epic.title,
                "status": epic.status.value,
                "total": len(children),
                "closed": closed,
                "percent": round(100.0 * closed / len(children), 1) if children else 0.0,
            }
        )
    if not rows:
        return pd.DataFrame(columns=EPIC_PROGRESS_COLUMNS)
    return pd.DataFrame(rows, columns=EPIC_PROGRESS_COLUMNS).sort_values("epic_id", ignore_index=True)


def epic_progress_list(index: HierarchyIndex) -> list[EpicProgress]:
    frame = aggregate_epic_progress(index)
    return [
        EpicProgress(
            epic_id=row["epic_id"],
            title=row["title"],
            status=row["status"],
            total=int(row["total"]),
            closed=int(row["closed"]),
            percent=float(row["percent"]),
        )
        for row in frame.to_dict("records")
    ]
