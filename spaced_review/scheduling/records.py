"""Schedule records kept for every (learner, item) pair."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from .errors import CorruptRecordError


DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3


@dataclass(frozen=True, slots=True)
class ScheduleRecord:
    """Review schedule of a single item for a single learner."""

    item_id: str
    next_review_date: date
    interval: int
    ease_factor: float
    repetitions: int
    last_review_date: Optional[date] = None
    version: int = 0

    def is_due(self, today: date) -> bool:
        return self.next_review_date <= today

    def days_until_due(self, today: date) -> int:
        """Return how many days remain before the item is due (negative when overdue)."""
        return (self.next_review_date - today).days

    def with_version(self, version: int) -> "ScheduleRecord":
        return replace(self, version=version)

    def to_dict(self, today: Optional[date] = None) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping using calendar date strings."""
        data: dict[str, Any] = {
            "itemId": self.item_id,
            "nextReviewDate": self.next_review_date.isoformat(),
            "interval": self.interval,
            "easeFactor": self.ease_factor,
            "repetitions": self.repetitions,
            "lastReviewDate": (
                self.last_review_date.isoformat() if self.last_review_date is not None else None
            ),
            "version": self.version,
        }
        if today is not None:
            data["isDue"] = self.is_due(today)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduleRecord":
        """Build a record from :meth:`to_dict` output; ``isDue`` is recomputed, never read."""
        try:
            item_id = data["itemId"]
            next_review_date = _parse_date(data["nextReviewDate"], "nextReviewDate")
            interval = data["interval"]
            ease_factor = data["easeFactor"]
            repetitions = data["repetitions"]
        except KeyError as exc:
            raise CorruptRecordError(f"Missing schedule field {exc.args[0]!r}.", exc.args[0]) from exc
        except TypeError as exc:
            raise CorruptRecordError("Schedule payload must be a mapping.") from exc

        raw_last = data.get("lastReviewDate")
        last_review_date = None if raw_last is None else _parse_date(raw_last, "lastReviewDate")

        if not isinstance(item_id, str) or not item_id:
            raise CorruptRecordError("itemId must be a non-empty string.", "itemId")
        for name, value in (("interval", interval), ("repetitions", repetitions)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise CorruptRecordError(f"{name} must be an integer.", name)
        if isinstance(ease_factor, bool) or not isinstance(ease_factor, (int, float)):
            raise CorruptRecordError("easeFactor must be a number.", "easeFactor")

        version = data.get("version", 0)
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise CorruptRecordError("version must be a non-negative integer.", "version")

        return cls(
            item_id=item_id,
            next_review_date=next_review_date,
            interval=interval,
            ease_factor=float(ease_factor),
            repetitions=repetitions,
            last_review_date=last_review_date,
            version=version,
        )


def _parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise CorruptRecordError(f"{field} must be a YYYY-MM-DD string.", field)
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise CorruptRecordError(f"{field} is not a valid calendar date: {value!r}.", field) from exc


def validate_record(record: ScheduleRecord) -> ScheduleRecord:
    """Return the record unchanged or raise :class:`CorruptRecordError`."""
    if not record.item_id:
        raise CorruptRecordError("item_id is empty.", "item_id")
    if record.interval < 1:
        raise CorruptRecordError(f"interval must be >= 1, got {record.interval}.", "interval")
    if not math.isfinite(record.ease_factor) or record.ease_factor < MIN_EASE_FACTOR:
        raise CorruptRecordError(
            f"ease_factor must be >= {MIN_EASE_FACTOR}, got {record.ease_factor}.", "ease_factor"
        )
    if record.repetitions < 0:
        raise CorruptRecordError(
            f"repetitions must be >= 0, got {record.repetitions}.", "repetitions"
        )
    if record.last_review_date is not None:
        expected = record.last_review_date + timedelta(days=record.interval)
        if record.next_review_date != expected:
            raise CorruptRecordError(
                f"next_review_date {record.next_review_date} does not match "
                f"last_review_date + interval ({expected}).",
                "next_review_date",
            )
    return record
