from __future__ import annotations


class PmdpDeparturesError(Exception):
    """Base class for errors raised by this package."""


class QueryValidationError(PmdpDeparturesError, ValueError):
    """The departure query is not acceptable (e.g. too many stops)."""


class UpstreamUnavailable(PmdpDeparturesError):
    """The departure board could not be fetched for one stop."""

    def __init__(self, stop_id: int, reason: str):
        super().__init__(f"stop {stop_id}: {reason}")
        self.stop_id = stop_id
        self.reason = reason


class CacheUnavailable(PmdpDeparturesError):
    """The cache directory cannot be created, read or written."""
