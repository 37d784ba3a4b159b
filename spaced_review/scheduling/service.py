"""Review service coordinating the scheduler with a schedule store."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Iterable, List, Mapping, Optional, Tuple, TypeVar

from spaced_review.db.schedules import ScheduleStore

from .due import DEFAULT_HORIZON_DAYS, DueSet, evaluate_due
from .errors import CorruptRecordError, StorageUnavailableError, VersionConflictError
from .quality import normalize_quality
from .records import ScheduleRecord, validate_record
from .srs import calculate_next_schedule
from .stats import ReviewStats, StatsCache, summarize


LOGGER = logging.getLogger(__name__)

DEFAULT_STORAGE_TIMEOUT = 5.0
DEFAULT_MAX_UPDATE_ATTEMPTS = 3

T = TypeVar("T")


@dataclass(slots=True)
class ImportResult:
    """Outcome of importing a batch of serialized schedules."""

    imported: int = 0
    errors: List[str] = field(default_factory=list)


class ReviewService:
    """Record reviews and answer "what is due" and "how am I doing" for learners."""

    def __init__(
        self,
        store: ScheduleStore,
        *,
        storage_timeout: float = DEFAULT_STORAGE_TIMEOUT,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        stats_cache: Optional[StatsCache] = None,
        max_update_attempts: int = DEFAULT_MAX_UPDATE_ATTEMPTS,
    ) -> None:
        if storage_timeout <= 0:
            raise ValueError("storage_timeout must be positive.")
        if max_update_attempts < 1:
            raise ValueError("max_update_attempts must be at least 1.")
        self._store = store
        self._storage_timeout = storage_timeout
        self._horizon_days = horizon_days
        self._stats_cache = stats_cache if stats_cache is not None else StatsCache(0)
        self._max_update_attempts = max_update_attempts
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    async def _call_store(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._storage_timeout)
        except asyncio.TimeoutError as exc:
            raise StorageUnavailableError(
                f"Schedule store did not complete {operation} within {self._storage_timeout} seconds."
            ) from exc

    def _lock_for(self, learner_id: str, item_id: str) -> asyncio.Lock:
        key = (learner_id, item_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _checked(self, learner_id: str, record: ScheduleRecord) -> Optional[ScheduleRecord]:
        """Return the record when it is valid, otherwise log it and treat it as absent."""
        try:
            return validate_record(record)
        except CorruptRecordError as exc:
            LOGGER.warning(
                "Ignoring corrupt schedule for learner %s item %s: %s",
                learner_id,
                record.item_id,
                exc,
            )
            return None

    async def _load_valid_schedules(self, learner_id: str) -> List[ScheduleRecord]:
        records = await self._call_store("list", self._store.list(learner_id))
        return [record for record in records if self._checked(learner_id, record) is not None]

    async def record_review(
        self,
        learner_id: str,
        item_id: str,
        quality: Any,
        today: date,
    ) -> ScheduleRecord:
        """Grade a review of ``item_id`` and persist the resulting schedule."""
        normalized = normalize_quality(quality)

        async with self._lock_for(learner_id, item_id):
            attempt = 1
            while True:
                stored = await self._call_store("get", self._store.get(learner_id, item_id))
                prior = self._checked(learner_id, stored) if stored is not None else None
                # A corrupt row is replaced, so the write still has to match its version.
                expected_version = stored.version if stored is not None else 0

                schedule = calculate_next_schedule(prior, normalized, today, item_id=item_id)
                try:
                    saved = await self._call_store(
                        "put",
                        self._store.put(learner_id, schedule, expected_version=expected_version),
                    )
                except VersionConflictError:
                    if attempt >= self._max_update_attempts:
                        raise
                    LOGGER.info(
                        "Concurrent update of learner %s item %s, retrying (attempt %d of %d).",
                        learner_id,
                        item_id,
                        attempt + 1,
                        self._max_update_attempts,
                    )
                    attempt += 1
                    continue
                break

        self._stats_cache.invalidate(learner_id)
        LOGGER.info(
            "Recorded review for learner %s item %s with quality %s; next review on %s.",
            learner_id,
            item_id,
            normalized,
            saved.next_review_date.isoformat(),
        )
        return saved

    async def get_schedule(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]:
        stored = await self._call_store("get", self._store.get(learner_id, item_id))
        if stored is None:
            return None
        return self._checked(learner_id, stored)

    async def list_schedules(self, learner_id: str) -> List[ScheduleRecord]:
        return await self._load_valid_schedules(learner_id)

    async def get_due_items(
        self,
        learner_id: str,
        today: date,
        horizon_days: Optional[int] = None,
    ) -> DueSet:
        """Return the learner's schedules split into due, upcoming and the rest."""
        schedules = await self._load_valid_schedules(learner_id)
        horizon = self._horizon_days if horizon_days is None else horizon_days
        return evaluate_due(schedules, today, horizon)

    async def get_stats(self, learner_id: str, today: date) -> ReviewStats:
        cached = self._stats_cache.get(learner_id, today)
        if cached is not None:
            return cached

        generation = self._stats_cache.generation(learner_id)
        schedules = await self._load_valid_schedules(learner_id)
        stats = summarize(schedules, today, self._horizon_days)
        # Skipped when a write landed while the schedules were loading.
        self._stats_cache.put(learner_id, today, stats, generation=generation)
        return stats

    async def remove_schedule(self, learner_id: str, item_id: str) -> bool:
        async with self._lock_for(learner_id, item_id):
            removed = await self._call_store("remove", self._store.remove(learner_id, item_id))
        self._stats_cache.invalidate(learner_id)
        if removed:
            LOGGER.info("Removed schedule for learner %s item %s.", learner_id, item_id)
        return removed

    async def export_schedules(self, learner_id: str, today: date) -> List[dict]:
        schedules = await self._load_valid_schedules(learner_id)
        schedules.sort(key=lambda record: (record.next_review_date, record.item_id))
        return [record.to_dict(today) for record in schedules]

    async def import_schedules(
        self,
        learner_id: str,
        payload: Iterable[Mapping[str, Any]],
    ) -> ImportResult:
        """Store serialized schedules, overwriting existing ones and reporting invalid entries."""
        result = ImportResult()
        for position, entry in enumerate(payload):
            try:
                record = validate_record(ScheduleRecord.from_dict(entry))
            except CorruptRecordError as exc:
                result.errors.append(f"Entry {position}: {exc}")
                continue

            async with self._lock_for(learner_id, record.item_id):
                try:
                    await self._call_store("put", self._store.put(learner_id, record))
                except VersionConflictError as exc:
                    result.errors.append(f"Entry {position}: {exc}")
                    continue
            result.imported += 1

        if result.imported:
            self._stats_cache.invalidate(learner_id)
        LOGGER.info(
            "Imported %d schedules for learner %s with %d rejected entries.",
            result.imported,
            learner_id,
            len(result.errors),
        )
        return result
