"""Per-snapshot lookup tables for the hierarchical issue id notation."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from beads_app.core.config import GRAPH_DEPENDENCY_KINDS
from beads_app.core.models import Dependency, DependencyKind, Issue, IssueStatus

logger = logging.getLogger(__name__)


def split_id(issue_id: str) -> tuple[str, ...]:
    """``"nacre-1.2.3"`` -> ``("nacre-1", "2", "3")``."""
    return tuple(issue_id.split("."))


@dataclass(slots=True)
class HierarchyIndex:
    """Built once per snapshot so graph requests stay linear in the issue count.

    ``parents`` maps every issue to its nearest existing ancestor by dotted
    id (``E.1.2`` -> ``E.1``, or ``E`` when ``E.1`` does not exist). Issues
    without a dotted ancestor may take their parent from an explicit
    parent-child dependency record.
    """

    issues: dict[str, Issue] = field(default_factory=dict)
    segments: dict[str, tuple[str, ...]] = field(default_factory=dict)
    parents: dict[str, str | None] = field(default_factory=dict)
    blocking: dict[str, list[Dependency]] = field(default_factory=dict)

    @classmethod
    def build(cls, issues: Iterable[Issue], dependencies: Iterable[Dependency] = ()) -> HierarchyIndex:
        index = cls()
        for issue in issues:
            if issue.status is IssueStatus.TOMBSTONE:
                continue
            index.issues[issue.id] = issue
            index.segments[issue.id] = split_id(issue.id)

        for issue_id in index.issues:
            index.parents[issue_id] = index._dotted_ancestor(issue_id)

        blocking: defaultdict[str, list[Dependency]] = defaultdict(list)
        for dep in dependencies:
            if dep.kind not in GRAPH_DEPENDENCY_KINDS:
                continue
            if dep.kind == DependencyKind.PARENT_CHILD.value:
                index._adopt_explicit_parent(dep)
            else:
                blocking[dep.from_id].append(dep)
        index.blocking = dict(blocking)
        return index

    def _dotted_ancestor(self, issue_id: str) -> str | None:
        parts = self.segments[issue_id]
        for depth in range(len(parts) - 1, 0, -1):
            candidate = ".".join(parts[:depth])
            if candidate in self.issues:
                return candidate
        return None

    def _adopt_explicit_parent(self, dep: Dependency) -> None:
        child, parent = dep.from_id, dep.to_id
        if child not in self.issues or parent not in self.issues:
            return
        if self.parents.get(child) is not None:
            return
        # Refuse links that would close a loop in the hierarchy.
        cursor: str | None = parent
        while cursor is not None:
            if cursor == child:
                logger.warning("Ignoring parent-child link %s -> %s: it would create a cycle", child, parent)
                return
            cursor = self.parents.get(cursor)
        self.parents[child] = parent

    def descendants(self, epic_id: str) -> list[str]:
        """``epic_id`` plus every id carrying the ``epic_id.`` prefix, in snapshot order."""
        prefix = epic_id + "."
        return [issue_id for issue_id in self.issues if issue_id == epic_id or issue_id.startswith(prefix)]
