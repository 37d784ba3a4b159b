"""Summary statistics over a learner's review schedules."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Optional, Sequence, Tuple

from .due import DEFAULT_HORIZON_DAYS, evaluate_due
from .records import ScheduleRecord
from .srs import round_half_up


@dataclass(frozen=True, slots=True)
class ReviewStats:
    """Aggregated metrics describing a learner's schedules."""

    total_scheduled: int
    due_for_review: int
    upcoming_this_week: int
    average_interval: int
    average_ease_factor: float

    def to_dict(self) -> dict[str, float]:
        return {
            "totalScheduled": self.total_scheduled,
            "dueForReview": self.due_for_review,
            "upcomingThisWeek": self.upcoming_this_week,
            "averageInterval": self.average_interval,
            "averageEaseFactor": self.average_ease_factor,
        }


EMPTY_STATS = ReviewStats(
    total_scheduled=0,
    due_for_review=0,
    upcoming_this_week=0,
    average_interval=0,
    average_ease_factor=0,
)


def summarize(
    schedules: Sequence[ScheduleRecord],
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> ReviewStats:
    """Count due and upcoming schedules and average their intervals and ease factors."""
    if not schedules:
        return EMPTY_STATS

    due_set = evaluate_due(schedules, today, horizon_days)
    total = len(schedules)
    return ReviewStats(
        total_scheduled=total,
        due_for_review=len(due_set.due),
        upcoming_this_week=len(due_set.upcoming),
        average_interval=round_half_up(sum(record.interval for record in schedules) / total),
        average_ease_factor=round(sum(record.ease_factor for record in schedules) / total, 2),
    )


class StatsCache:
    """Time-limited cache of :class:`ReviewStats` per learner and day.

    Each learner has a generation counter bumped by :meth:`invalidate`. A caller
    reads :meth:`generation` before loading schedules and hands it to :meth:`put`,
    which discards the result when an invalidation happened in between.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative.")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, date], Tuple[float, ReviewStats]] = {}
        self._generations: Dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def generation(self, learner_id: str) -> int:
        return self._generations.get(learner_id, 0)

    def get(self, learner_id: str, today: date) -> Optional[ReviewStats]:
        """Return fresh cached stats or ``None``, evicting stale entries."""
        key = (learner_id, today)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, stats = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return stats

    def put(
        self,
        learner_id: str,
        today: date,
        stats: ReviewStats,
        generation: Optional[int] = None,
    ) -> bool:
        """Cache ``stats`` and return whether they were stored.

        Expired entries and the learner's entries for other days are evicted.
        """
        if not self.enabled:
            return False
        if generation is not None and generation != self.generation(learner_id):
            return False

        now = self._clock()
        evicted = [
            key
            for key, (stored_at, _) in self._entries.items()
            if now - stored_at >= self._ttl or (key[0] == learner_id and key[1] != today)
        ]
        for key in evicted:
            del self._entries[key]
        self._entries[(learner_id, today)] = (now, stats)
        return True

    def invalidate(self, learner_id: str) -> None:
        """Drop every cached entry belonging to ``learner_id``."""
        self._generations[learner_id] = self.generation(learner_id) + 1
        for key in [key for key in self._entries if key[0] == learner_id]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
