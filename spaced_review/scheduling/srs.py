"""SM-2 scheduling for item reviews."""

from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Optional, Union

from .quality import is_passing
from .records import DEFAULT_EASE_FACTOR, MIN_EASE_FACTOR, ScheduleRecord


FAILURE_EASE_PENALTY = 0.15
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def adjust_ease_factor(ease_factor: float, quality: Union[int, float]) -> float:
    """Apply the SM-2 ease update for a successful review."""
    miss = 5 - quality
    ease_factor += 0.1 - miss * (0.08 + miss * 0.02)
    return max(MIN_EASE_FACTOR, ease_factor)


def calculate_next_schedule(
    prior: Optional[ScheduleRecord],
    quality: Union[int, float],
    today: date,
    *,
    item_id: Optional[str] = None,
) -> ScheduleRecord:
    """Return the schedule that follows a review graded ``quality`` on ``today``.

    ``quality`` is expected to be normalised already. When ``prior`` is ``None``
    the item has never been reviewed and ``item_id`` must be given. The result
    keeps ``prior.version`` so the store can detect concurrent writers.
    """
    if prior is None:
        if not item_id:
            raise ValueError("item_id is required for the first review of an item.")
        return ScheduleRecord(
            item_id=item_id,
            next_review_date=today + timedelta(days=FIRST_INTERVAL_DAYS),
            interval=FIRST_INTERVAL_DAYS,
            ease_factor=DEFAULT_EASE_FACTOR,
            repetitions=1 if is_passing(quality) else 0,
            last_review_date=today,
        )

    if not is_passing(quality):
        return ScheduleRecord(
            item_id=prior.item_id,
            next_review_date=today + timedelta(days=FIRST_INTERVAL_DAYS),
            interval=FIRST_INTERVAL_DAYS,
            ease_factor=max(MIN_EASE_FACTOR, prior.ease_factor - FAILURE_EASE_PENALTY),
            repetitions=0,
            last_review_date=today,
            version=prior.version,
        )

    if prior.repetitions == 0:
        interval = FIRST_INTERVAL_DAYS
    elif prior.repetitions == 1:
        interval = SECOND_INTERVAL_DAYS
    else:
        interval = max(1, round_half_up(prior.interval * prior.ease_factor))

    return ScheduleRecord(
        item_id=prior.item_id,
        next_review_date=today + timedelta(days=interval),
        interval=interval,
        ease_factor=adjust_ease_factor(prior.ease_factor, quality),
        repetitions=prior.repetitions + 1,
        last_review_date=today,
        version=prior.version,
    )
