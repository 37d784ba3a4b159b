"""Exceptions raised by the review scheduler."""

from __future__ import annotations

from typing import Optional


class SchedulerError(Exception):
    """Base class for every scheduler failure."""


class ValidationError(SchedulerError, ValueError):
    """Raised when a quality rating cannot be used."""


class StorageUnavailableError(SchedulerError):
    """Raised when the schedule store fails or does not answer in time."""


class CorruptRecordError(SchedulerError):
    """Raised when a stored schedule violates one of its invariants."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class VersionConflictError(SchedulerError):
    """Raised when a conditional write finds a different stored version."""

    def __init__(
        self, learner_id: str, item_id: str, expected: int, actual: Optional[int] = None
    ) -> None:
        found = "a newer version" if actual is None else f"version {actual}"
        super().__init__(f"Schedule {learner_id}/{item_id} is at {found}, expected {expected}.")
        self.learner_id = learner_id
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
