"""Domain data models for issues, lifecycle events, dependencies and snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class IssueStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"
    DEFERRED = "deferred"
    TOMBSTONE = "tombstone"
    PINNED = "pinned"


class IssueType(str, Enum):
    EPIC = "epic"
    FEATURE = "feature"
    BUG = "bug"
    TASK = "task"
    CHORE = "chore"
    MESSAGE = "message"
    MERGE_REQUEST = "merge-request"
    MOLECULE = "molecule"
    GATE = "gate"


class EventKind(str, Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    DELETED = "deleted"
    OTHER = "other"


class DependencyKind(str, Enum):
    PARENT_CHILD = "parent-child"
    BLOCKS = "blocks"


@dataclass(frozen=True, slots=True)
class Dependency:
    from_id: str
    to_id: str
    kind: str
    created_at: datetime | None = None
    created_by: str | None = None


@dataclass(frozen=True, slots=True)
class Issue:
    id: str
    title: str
    issue_type: IssueType
    status: IssueStatus
    priority: int
    created_at: datetime | None
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    dependencies: tuple[Dependency, ...] = ()

    @property
    def parent_id(self) -> str | None:
        """Immediate parent by id notation (``E.1.2`` -> ``E.1``)."""
        if "." not in self.id:
            return None
        return self.id.rsplit(".", 1)[0]


@dataclass(frozen=True, slots=True)
class Event:
    issue_id: str
    kind: EventKind
    timestamp: datetime
    sequence: int = 0
    from_status: IssueStatus | None = None
    to_status: IssueStatus | None = None
    raw_kind: str | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class StatusInterval:
    status: IssueStatus
    start: datetime
    end: datetime | None = None

    def duration_seconds(self, now: datetime) -> float:
        end = self.end if self.end is not None else now
        return (end - self.start).total_seconds()


@dataclass(frozen=True, slots=True)
class IssueTimeline:
    issue_id: str
    created_at: datetime | None
    intervals: tuple[StatusInterval, ...] = ()
    deleted_at: datetime | None = None
    inconsistencies: int = 0

    @property
    def first_closed_at(self) -> datetime | None:
        for interval in self.intervals:
            if interval.status is IssueStatus.CLOSED:
                return interval.start
        return None

    def terminal_closed_at(self, as_of: datetime | None = None) -> datetime | None:
        """When the issue last became closed, if closed is where it stands at ``as_of``."""
        last = None
        for interval in self.intervals:
            if as_of is not None and interval.start >= as_of:
                break
            last = interval
        if last is not None and last.status is IssueStatus.CLOSED:
            return last.start
        return None

    @property
    def current_status(self) -> IssueStatus | None:
        return self.intervals[-1].status if self.intervals else None


@dataclass(slots=True)
class SourcePayload:
    """Raw records as returned by a source adapter, before normalization."""

    issues: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    dependencies: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Snapshot:
    issues: tuple[Issue, ...]
    events: tuple[Event, ...]
    dependencies: tuple[Dependency, ...]
    fingerprint: str
    fetched_at: datetime

    @classmethod
    def empty(cls, fetched_at: datetime) -> Snapshot:
        return cls((), (), (), "", fetched_at)
