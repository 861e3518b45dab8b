"""Exception hierarchy for the path-coverage harness."""

from __future__ import annotations


class PathCoverageError(Exception):
    """Base error for the harness."""


class CatalogError(PathCoverageError):
    """The scenario catalog is malformed (unreadable YAML, duplicate path ids...)."""


class UnknownTriggerError(CatalogError):
    """A catalog entry names a trigger that is not registered."""


class LogStoreError(PathCoverageError):
    """The search index could not be queried."""


class TriggerError(PathCoverageError):
    """A trigger step could not reach the system under test."""


class StepTimeoutError(PathCoverageError):
    """A trigger or query step ran past the path's step deadline."""
