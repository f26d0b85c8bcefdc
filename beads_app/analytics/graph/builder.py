"""GraphView construction with epic scoping and type filtering."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from beads_app.core.config import ISSUE_TYPE_ALIASES
from beads_app.core.models import DependencyKind, IssueType

from .index import HierarchyIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GraphNode:
    id: str
    title: str
    issue_type: str
    status: str
    priority: int
    parent: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.issue_type,
            "status": self.status,
            "priority": self.priority,
            "parent": self.parent,
        }


@dataclass(frozen=True, slots=True)
class GraphEdge:
    from_id: str
    to_id: str
    kind: str

    def to_dict(self) -> dict:
        return {"from": self.from_id, "to": self.to_id, "type": self.kind}


@dataclass(frozen=True, slots=True)
class GraphView:
    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()
    epic_id: str | None = None
    types: tuple[str, ...] | None = None
    stale: bool = False

    @property
    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def edges_of_kind(self, kind: DependencyKind | str) -> list[GraphEdge]:
        value = kind.value if isinstance(kind, DependencyKind) else kind
        return [e for e in self.edges if e.kind == value]

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "epic": self.epic_id,
            "types": list(self.types) if self.types is not None else None,
            "stale": self.stale,
        }


def normalize_type_filter(types: Iterable[IssueType | str] | None) -> tuple[str, ...] | None:
    """Canonical, sorted type names; unknown names are dropped with a warning."""
    if types is None:
        return None
    if isinstance(types, (str, IssueType)):
        types = [types]
    wanted: set[str] = set()
    for value in types:
        if isinstance(value, IssueType):
            wanted.add(value.value)
            continue
        canonical = ISSUE_TYPE_ALIASES.get(str(value).strip().lower())
        if canonical is None:
            logger.warning("Ignoring unknown issue type in graph filter: %r", value)
            continue
        wanted.add(canonical)
    return tuple(sorted(wanted))


def build_graph_view(
    index: HierarchyIndex,
    epic_id: str | None = None,
    types: Iterable[IssueType | str] | None = None,
    *,
    stale: bool = False,
) -> GraphView:
    """Build the node/edge view for an optional epic scope and type filter.

    Parameters
    ----------
    index : HierarchyIndex
        Lookup tables for the current snapshot.
    epic_id : str, optional
        Restrict nodes to the epic and every issue whose id starts with
        ``epic_id + "."``, at any depth.
    types : iterable of IssueType or str, optional
        Keep only nodes of these types; applied after epic scoping.

    Returns
    -------
    GraphView
        Parent-child edges (child -> nearest ancestor) and blocking edges
        whose endpoints are both in the view. Edges to missing issues are
        dropped; blocking cycles are passed through untouched.
    """
    scoped = index.descendants(epic_id) if epic_id else list(index.issues)
    if epic_id and epic_id not in index.issues:
        logger.warning("Graph requested for unknown epic %s; scoping by prefix only", epic_id)

    type_filter = normalize_type_filter(types)
    if type_filter is not None:
        allowed = set(type_filter)
        scoped = [i for i in scoped if index.issues[i].issue_type.value in allowed]

    in_view = set(scoped)
    nodes: list[GraphNode] = []
    edges: list[GraphEdge] = []
    seen: set[tuple[str, str, str]] = set()
    dangling = 0

    def _add_edge(from_id: str, to_id: str, kind: str) -> None:
        key = (from_id, to_id, kind)
        if key not in seen:
            seen.add(key)
            edges.append(GraphEdge(from_id, to_id, kind))

    for issue_id in scoped:
        issue = index.issues[issue_id]
        parent = index.parents.get(issue_id)
        if parent not in in_view:
            parent = None
        nodes.append(
            GraphNode(
                id=issue.id,
                title=issue.title,
                issue_type=issue.issue_type.value,
                status=issue.status.value,
                priority=issue.priority,
                parent=parent,
            )
        )
        if parent is not None:
            _add_edge(issue_id, parent, DependencyKind.PARENT_CHILD.value)
        for dep in index.blocking.get(issue_id, ()):
            if dep.to_id not in index.issues:
                dangling += 1
                continue
            if dep.to_id in in_view:
                _add_edge(dep.from_id, dep.to_id, dep.kind)

    if dangling:
        logger.debug("Dropped %s dangling dependency edges", dangling)
    return GraphView(
        nodes=tuple(nodes),
        edges=tuple(edges),
        epic_id=epic_id,
        types=type_filter,
        stale=stale,
    )
