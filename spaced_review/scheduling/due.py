"""Partitioning of schedules into due and upcoming reviews."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List

from .records import ScheduleRecord


DEFAULT_HORIZON_DAYS = 7


@dataclass(slots=True)
class DueSet:
    """Schedules split by how soon they need reviewing."""

    due: List[ScheduleRecord] = field(default_factory=list)
    upcoming: List[ScheduleRecord] = field(default_factory=list)
    neither: List[ScheduleRecord] = field(default_factory=list)

    def due_by_date(self) -> List[ScheduleRecord]:
        """Return due schedules with the longest overdue first."""
        return sorted(self.due, key=lambda record: record.next_review_date)

    @property
    def due_item_ids(self) -> List[str]:
        return [record.item_id for record in self.due]


def evaluate_due(
    schedules: Iterable[ScheduleRecord],
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> DueSet:
    """Split schedules into due, upcoming within ``horizon_days``, and the rest."""
    if horizon_days < 0:
        raise ValueError("horizon_days must not be negative.")

    result = DueSet()
    for record in schedules:
        if record.is_due(today):
            result.due.append(record)
        elif record.days_until_due(today) <= horizon_days:
            result.upcoming.append(record)
        else:
            result.neither.append(record)
    return result
