"""Status and issue type normalization utilities.

This module provides centralized vocabulary handling reused by the mappers,
the event normalizer and the analytics modules. It uses the workflow
configuration from config.py (STATUS_ALIASES and ISSUE_TYPE_ALIASES).
"""

from __future__ import annotations

from .config import DEFAULT_ISSUE_TYPE, ISSUE_TYPE_ALIASES, STATUS_ALIASES
from .models import IssueStatus, IssueType


def normalize_status(value: str | None) -> IssueStatus | None:
    """Map a raw status string to its canonical ``IssueStatus``.

    Parameters
    ----------
    value : str | None
        Raw status string from the beads CLI or an activity record.

    Returns
    -------
    IssueStatus | None
        Canonical status, or None for empty or unrecognized values so callers
        can decide whether that is fatal for the record.

    Examples
    --------
    >>> normalize_status("In Progress")
    <IssueStatus.IN_PROGRESS: 'in_progress'>
    >>> normalize_status("done")
    <IssueStatus.CLOSED: 'closed'>
    >>> normalize_status("some_new_status") is None
    True
    """
    if value is None:
        return None
    if isinstance(value, IssueStatus):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    canonical = STATUS_ALIASES.get(text)
    if canonical is None:
        return None
    return IssueStatus(canonical)


def normalize_issue_type(value: str | None) -> IssueType:
    """Map a raw issue type to ``IssueType``, defaulting to task."""
    if isinstance(value, IssueType):
        return value
    text = str(value or "").strip().lower()
    return IssueType(ISSUE_TYPE_ALIASES.get(text, DEFAULT_ISSUE_TYPE))


def is_terminal_status(value: IssueStatus | str | None) -> bool:
    status = normalize_status(value) if not isinstance(value, IssueStatus) else value
    return status in {IssueStatus.CLOSED, IssueStatus.TOMBSTONE}
