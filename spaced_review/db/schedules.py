"""Storage adapters for learners' review schedules."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spaced_review.scheduling.errors import StorageUnavailableError, VersionConflictError
from spaced_review.scheduling.records import ScheduleRecord

from . import ReviewSchedule


LOGGER = logging.getLogger(__name__)


class ScheduleStore(Protocol):
    """Persistence port used by the review service.

    ``put`` with ``expected_version=None`` overwrites unconditionally. Any other
    value must match the stored version (``0`` when nothing is stored yet) or
    :class:`VersionConflictError` is raised. Failures to reach the backend are
    reported as :class:`StorageUnavailableError`.
    """

    async def get(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]: ...

    async def put(
        self,
        learner_id: str,
        record: ScheduleRecord,
        expected_version: Optional[int] = None,
    ) -> ScheduleRecord: ...

    async def list(self, learner_id: str) -> List[ScheduleRecord]: ...

    async def remove(self, learner_id: str, item_id: str) -> bool: ...


def _to_record(row: ReviewSchedule) -> ScheduleRecord:
    # Invariants are checked by the caller so that corrupt rows can be recovered.
    return ScheduleRecord(
        item_id=row.item_id,
        next_review_date=row.next_review_date,
        interval=row.interval,
        ease_factor=row.ease_factor,
        repetitions=row.repetitions,
        last_review_date=row.last_review_date,
        version=row.version,
    )


def _schedule_values(record: ScheduleRecord) -> dict:
    return {
        "next_review_date": record.next_review_date,
        "interval": record.interval,
        "ease_factor": record.ease_factor,
        "repetitions": record.repetitions,
        "last_review_date": record.last_review_date,
    }


class SqlScheduleStore:
    """Schedule store backed by the ``review_schedules`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailableError(f"Schedule database is unavailable: {exc}") from exc

    @staticmethod
    async def _load(session: AsyncSession, learner_id: str, item_id: str) -> Optional[ReviewSchedule]:
        stmt = select(ReviewSchedule).where(
            ReviewSchedule.learner_id == learner_id,
            ReviewSchedule.item_id == item_id,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def get(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]:
        async with self._transaction() as session:
            row = await self._load(session, learner_id, item_id)
            return _to_record(row) if row is not None else None

    async def put(
        self,
        learner_id: str,
        record: ScheduleRecord,
        expected_version: Optional[int] = None,
    ) -> ScheduleRecord:
        if expected_version is None:
            try:
                return await self._overwrite(learner_id, record)
            except VersionConflictError:
                # A concurrent insert won the race; the row now exists, so overwrite it.
                LOGGER.info(
                    "Schedule for learner %s item %s was created concurrently, overwriting it.",
                    learner_id,
                    record.item_id,
                )
                return await self._overwrite(learner_id, record)

        async with self._transaction() as session:
            if expected_version == 0:
                return await self._insert(session, learner_id, record)

            stmt = (
                update(ReviewSchedule)
                .where(
                    ReviewSchedule.learner_id == learner_id,
                    ReviewSchedule.item_id == record.item_id,
                    ReviewSchedule.version == expected_version,
                )
                .values(version=expected_version + 1, **_schedule_values(record))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                current = await self._load(session, learner_id, record.item_id)
                raise VersionConflictError(
                    learner_id,
                    record.item_id,
                    expected_version,
                    current.version if current is not None else 0,
                )
            return record.with_version(expected_version + 1)

    async def _insert(
        self, session: AsyncSession, learner_id: str, record: ScheduleRecord
    ) -> ScheduleRecord:
        session.add(
            ReviewSchedule(
                learner_id=learner_id,
                item_id=record.item_id,
                version=1,
                **_schedule_values(record),
            )
        )
        try:
            await session.flush()
        except IntegrityError as exc:
            # Another writer created the row first.
            raise VersionConflictError(learner_id, record.item_id, 0) from exc
        return record.with_version(1)

    async def _overwrite(self, learner_id: str, record: ScheduleRecord) -> ScheduleRecord:
        async with self._transaction() as session:
            row = await self._load(session, learner_id, record.item_id)
            if row is None:
                return await self._insert(session, learner_id, record)

            for name, value in _schedule_values(record).items():
                setattr(row, name, value)
            row.version += 1
            await session.flush()
            return record.with_version(row.version)

    async def list(self, learner_id: str) -> List[ScheduleRecord]:
        async with self._transaction() as session:
            stmt = (
                select(ReviewSchedule)
                .where(ReviewSchedule.learner_id == learner_id)
                .order_by(ReviewSchedule.next_review_date, ReviewSchedule.id)
            )
            result = await session.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]

    async def remove(self, learner_id: str, item_id: str) -> bool:
        async with self._transaction() as session:
            stmt = (
                delete(ReviewSchedule)
                .where(
                    ReviewSchedule.learner_id == learner_id,
                    ReviewSchedule.item_id == item_id,
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount > 0


class InMemoryScheduleStore:
    """Process-local schedule store keeping records in a dictionary."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], ScheduleRecord] = {}

    async def get(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]:
        return self._records.get((learner_id, item_id))

    async def put(
        self,
        learner_id: str,
        record: ScheduleRecord,
        expected_version: Optional[int] = None,
    ) -> ScheduleRecord:
        key = (learner_id, record.item_id)
        current = self._records.get(key)
        current_version = current.version if current is not None else 0
        if expected_version is not None and expected_version != current_version:
            raise VersionConflictError(learner_id, record.item_id, expected_version, current_version)

        stored = record.with_version(current_version + 1)
        self._records[key] = stored
        return stored

    async def list(self, learner_id: str) -> List[ScheduleRecord]:
        return [record for (owner, _), record in self._records.items() if owner == learner_id]

    async def remove(self, learner_id: str, item_id: str) -> bool:
        return self._records.pop((learner_id, item_id), None) is not None

    def mirror(self, learner_id: str, item_id: str, record: Optional[ScheduleRecord]) -> None:
        """Store ``record`` with its own version, or forget the item when it is ``None``."""
        if record is None:
            self._records.pop((learner_id, item_id), None)
        else:
            self._records[(learner_id, item_id)] = record

    def mirror_learner(self, learner_id: str, records: Iterable[ScheduleRecord]) -> None:
        """Replace every record of ``learner_id`` with ``records``."""
        for key in [key for key in self._records if key[0] == learner_id]:
            del self._records[key]
        for record in records:
            self._records[(learner_id, record.item_id)] = record


class FallbackScheduleStore:
    """Route calls to a primary store and serve them from a local copy when it is unavailable.

    Every successful primary call is mirrored into the fallback, so the fallback
    holds the last state read from or written to the primary. A call only falls
    back when that copy covers it: the learner was listed, or the item was read
    or written. Otherwise the primary's :class:`StorageUnavailableError` is
    raised, because an empty fallback would restart schedules from scratch.
    Writes made while the primary is down live only in this process.
    """

    def __init__(
        self, primary: ScheduleStore, fallback: Optional[InMemoryScheduleStore] = None
    ) -> None:
        self._primary = primary
        self._fallback = fallback if fallback is not None else InMemoryScheduleStore()
        self._seeded_learners: Set[str] = set()
        self._seeded_items: Set[Tuple[str, str]] = set()

    def _has_copy(self, learner_id: str, item_id: Optional[str] = None) -> bool:
        if learner_id in self._seeded_learners:
            return True
        return item_id is not None and (learner_id, item_id) in self._seeded_items

    def _check_fallback(
        self,
        operation: str,
        exc: StorageUnavailableError,
        learner_id: str,
        item_id: Optional[str] = None,
    ) -> None:
        if not self._has_copy(learner_id, item_id):
            LOGGER.error(
                "Primary schedule store failed during %s and no local copy exists for learner %s: %s",
                operation,
                learner_id,
                exc,
            )
            raise exc
        LOGGER.warning(
            "Primary schedule store failed during %s, using fallback store: %s", operation, exc
        )

    async def get(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]:
        try:
            record = await self._primary.get(learner_id, item_id)
        except StorageUnavailableError as exc:
            self._check_fallback("get", exc, learner_id, item_id)
            return await self._fallback.get(learner_id, item_id)

        self._fallback.mirror(learner_id, item_id, record)
        self._seeded_items.add((learner_id, item_id))
        return record

    async def put(
        self,
        learner_id: str,
        record: ScheduleRecord,
        expected_version: Optional[int] = None,
    ) -> ScheduleRecord:
        try:
            stored = await self._primary.put(learner_id, record, expected_version=expected_version)
        except StorageUnavailableError as exc:
            self._check_fallback("put", exc, learner_id, record.item_id)
            return await self._fallback.put(learner_id, record, expected_version=expected_version)

        self._fallback.mirror(learner_id, record.item_id, stored)
        self._seeded_items.add((learner_id, record.item_id))
        return stored

    async def list(self, learner_id: str) -> List[ScheduleRecord]:
        try:
            records = await self._primary.list(learner_id)
        except StorageUnavailableError as exc:
            self._check_fallback("list", exc, learner_id)
            return await self._fallback.list(learner_id)

        self._fallback.mirror_learner(learner_id, records)
        self._seeded_learners.add(learner_id)
        return records

    async def remove(self, learner_id: str, item_id: str) -> bool:
        try:
            removed = await self._primary.remove(learner_id, item_id)
        except StorageUnavailableError as exc:
            self._check_fallback("remove", exc, learner_id, item_id)
            return await self._fallback.remove(learner_id, item_id)

        self._fallback.mirror(learner_id, item_id, None)
        self._seeded_items.add((learner_id, item_id))
        return removed
