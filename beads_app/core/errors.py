"""Error taxonomy for the insight engine."""

from __future__ import annotations


class BeadsAppError(Exception):
    """Base class for all errors raised by beads_app."""


class SourceUnavailable(BeadsAppError):
    """The record source (``bd`` process or files) could not be read."""


class MalformedRecord(BeadsAppError, ValueError):
    """A single issue or event record could not be parsed."""

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class ComputationError(BeadsAppError):
    """An internal invariant was violated while aggregating or building graphs."""
