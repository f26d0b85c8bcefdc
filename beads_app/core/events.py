"""Normalization of raw activity records into typed lifecycle events."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from .config import EVENT_KIND_ALIASES
from .errors import MalformedRecord
from .mappers import parse_timestamp
from .models import Event, EventKind
from .status import normalize_status

logger = logging.getLogger(__name__)

# Field names accepted for each attribute, first match wins
_ID_FIELDS = ("issue_id", "id", "issue")
_KIND_FIELDS = ("type", "kind", "event_type")
_TIME_FIELDS = ("timestamp", "created_at", "time")
_FROM_FIELDS = ("old_status", "from_status", "from")
_TO_FIELDS = ("new_status", "to_status", "to")


def _first(raw: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return None


def normalize_event(raw: dict[str, Any], sequence: int = 0) -> Event:
    """Turn one loosely typed activity record into an ``Event``.

    Parameters
    ----------
    raw : dict
        Record as emitted by ``bd activity --json`` (or an equivalent file).
    sequence : int
        Position of the record in the source log, used as a stable tie-break
        when timestamps collide.

    Returns
    -------
    Event
        Typed event. Unrecognized kind strings become ``EventKind.OTHER``
        with the raw kind preserved.

    Raises
    ------
    MalformedRecord
        When the issue id, the kind or the timestamp is missing or
        unparseable, or a status change has no recognizable target status.
    """
    if not isinstance(raw, dict):
        raise MalformedRecord("event record is not an object", raw)
    issue_id = _first(raw, _ID_FIELDS)
    if not issue_id:
        raise MalformedRecord("event record has no issue id", raw)
    raw_kind = _first(raw, _KIND_FIELDS)
    if not raw_kind:
        raise MalformedRecord(f"event for {issue_id} has no kind", raw)
    timestamp = parse_timestamp(_first(raw, _TIME_FIELDS))
    if timestamp is None:
        raise MalformedRecord(f"event for {issue_id} has no valid timestamp", raw)

    kind_name, implied_status = EVENT_KIND_ALIASES.get(str(raw_kind).strip().lower(), ("other", None))
    kind = EventKind(kind_name)
    from_status = normalize_status(_first(raw, _FROM_FIELDS))
    to_status = normalize_status(_first(raw, _TO_FIELDS))

    if kind is EventKind.STATUS_CHANGED:
        if to_status is None and implied_status is not None:
            to_status = normalize_status(implied_status)
        if to_status is None:
            raise MalformedRecord(f"status change for {issue_id} has no known target status", raw)

    return Event(
        issue_id=str(issue_id),
        kind=kind,
        timestamp=timestamp,
        sequence=sequence,
        from_status=from_status,
        to_status=to_status,
        raw_kind=str(raw_kind),
        message=raw.get("message"),
    )


def normalize_events(records: Iterable[dict[str, Any]]) -> list[Event]:
    """Normalize a batch; malformed records are skipped and logged."""
    events: list[Event] = []
    skipped = 0
    for sequence, raw in enumerate(records):
        try:
            events.append(normalize_event(raw, sequence))
        except MalformedRecord as exc:
            skipped += 1
            logger.warning("Skipping malformed event record #%s: %s", sequence, exc)
    if skipped:
        logger.info("Normalized %s events (%s skipped)", len(events), skipped)
    return events


def group_events_by_issue(events: Iterable[Event]) -> dict[str, list[Event]]:
    grouped: defaultdict[str, list[Event]] = defaultdict(list)
    for event in events:
        grouped[event.issue_id].append(event)
    return dict(grouped)
