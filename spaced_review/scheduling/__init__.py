"""Spaced-repetition scheduling core."""

from .due import DueSet, evaluate_due
from .errors import (
    CorruptRecordError,
    SchedulerError,
    StorageUnavailableError,
    ValidationError,
    VersionConflictError,
)
from .quality import normalize_quality
from .records import ScheduleRecord, validate_record
from .srs import calculate_next_schedule
from .stats import ReviewStats, StatsCache, summarize

__all__ = [
    "CorruptRecordError",
    "DueSet",
    "ReviewStats",
    "ScheduleRecord",
    "SchedulerError",
    "StatsCache",
    "StorageUnavailableError",
    "ValidationError",
    "VersionConflictError",
    "calculate_next_schedule",
    "evaluate_due",
    "normalize_quality",
    "summarize",
    "validate_record",
]
