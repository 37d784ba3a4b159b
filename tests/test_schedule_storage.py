from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError

from spaced_review.db.schedules import (
    FallbackScheduleStore,
    InMemoryScheduleStore,
    SqlScheduleStore,
)
from spaced_review.scheduling.errors import StorageUnavailableError, VersionConflictError
from spaced_review.scheduling.records import ScheduleRecord


def _record(item_id: str = "too-expensive", interval: int = 6, reviewed: date = date(2024, 1, 2)) -> ScheduleRecord:
    return ScheduleRecord(
        item_id=item_id,
        next_review_date=reviewed + timedelta(days=interval),
        interval=interval,
        ease_factor=2.6,
        repetitions=2,
        last_review_date=reviewed,
    )


class _BrokenSessionFactory:
    def __call__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


class _UnavailableStore:
    def __init__(self) -> None:
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise StorageUnavailableError("primary is down")

    get = put = list = remove = _fail


class _SwitchableStore(InMemoryScheduleStore):
    """In-memory primary that can be taken offline."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise StorageUnavailableError("primary is down")

    async def get_while_down(self, learner_id: str, item_id: str) -> Optional[ScheduleRecord]:
        return await InMemoryScheduleStore.get(self, learner_id, item_id)

    async def get(self, learner_id, item_id):
        self._check()
        return await super().get(learner_id, item_id)

    async def put(self, learner_id, record, expected_version=None):
        self._check()
        return await super().put(learner_id, record, expected_version=expected_version)

    async def list(self, learner_id):
        self._check()
        return await super().list(learner_id)

    async def remove(self, learner_id, item_id):
        self._check()
        return await super().remove(learner_id, item_id)


class _StaleReadSqlStore(SqlScheduleStore):
    """Misses the row on its first read, as if another writer inserted it just after."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.stale_reads = 0

    async def _load(self, session, learner_id, item_id):
        if self.stale_reads == 0:
            self.stale_reads += 1
            return None
        return await super()._load(session, learner_id, item_id)


@pytest.mark.asyncio
async def test_sql_store_creates_and_loads_schedule(session_factory) -> None:
    store = SqlScheduleStore(session_factory)
    record = _record()

    stored = await store.put("learner-1", record, expected_version=0)
    loaded = await store.get("learner-1", "too-expensive")

    assert stored.version == 1
    assert loaded == stored
    assert loaded.next_review_date == date(2024, 1, 8)
    assert await store.get("learner-2", "too-expensive") is None


@pytest.mark.asyncio
async def test_sql_store_conditional_update(session_factory) -> None:
    store = SqlScheduleStore(session_factory)
    await store.put("learner-1", _record(), expected_version=0)

    updated = await store.put("learner-1", _record(interval=16, reviewed=date(2024, 1, 8)), expected_version=1)
    assert updated.version == 2
    assert (await store.get("learner-1", "too-expensive")).interval == 16

    with pytest.raises(VersionConflictError) as excinfo:
        await store.put("learner-1", _record(interval=1), expected_version=1)

    assert excinfo.value.actual == 2
    assert (await store.get("learner-1", "too-expensive")).interval == 16


@pytest.mark.asyncio
async def test_sql_store_insert_conflicts_with_existing_row(session_factory) -> None:
    store = SqlScheduleStore(session_factory)
    await store.put("learner-1", _record(), expected_version=0)

    with pytest.raises(VersionConflictError):
        await store.put("learner-1", _record(interval=1), expected_version=0)

    assert (await store.get("learner-1", "too-expensive")).version == 1


@pytest.mark.asyncio
async def test_sql_store_conditional_update_of_missing_row(session_factory) -> None:
    store = SqlScheduleStore(session_factory)

    with pytest.raises(VersionConflictError) as excinfo:
        await store.put("learner-1", _record(), expected_version=3)

    assert excinfo.value.actual == 0


@pytest.mark.asyncio
async def test_sql_store_unconditional_put_overwrites(session_factory) -> None:
    store = SqlScheduleStore(session_factory)

    first = await store.put("learner-1", _record())
    second = await store.put("learner-1", _record(interval=1))

    assert first.version == 1
    assert second.version == 2
    assert (await store.get("learner-1", "too-expensive")).interval == 1


@pytest.mark.asyncio
async def test_sql_store_lists_and_removes_per_learner(session_factory) -> None:
    store = SqlScheduleStore(session_factory)
    await store.put("learner-1", _record("a"))
    await store.put("learner-1", _record("b", interval=1))
    await store.put("learner-2", _record("c"))

    listed = await store.list("learner-1")
    assert sorted(record.item_id for record in listed) == ["a", "b"]

    assert await store.remove("learner-1", "a") is True
    assert await store.remove("learner-1", "a") is False
    assert [record.item_id for record in await store.list("learner-1")] == ["b"]
    assert [record.item_id for record in await store.list("learner-2")] == ["c"]


@pytest.mark.asyncio
async def test_sql_store_does_not_validate_rows(session_factory) -> None:
    store = SqlScheduleStore(session_factory)
    corrupt = ScheduleRecord(
        item_id="broken",
        next_review_date=date(2024, 1, 1),
        interval=-3,
        ease_factor=0.4,
        repetitions=-1,
    )

    await store.put("learner-1", corrupt)

    loaded = await store.get("learner-1", "broken")
    assert loaded.interval == -3
    assert loaded.ease_factor == 0.4


@pytest.mark.asyncio
async def test_sql_store_reports_unavailable_database() -> None:
    store = SqlScheduleStore(_BrokenSessionFactory())

    with pytest.raises(StorageUnavailableError) as excinfo:
        await store.get("learner-1", "too-expensive")

    assert isinstance(excinfo.value.__cause__, OperationalError)

    with pytest.raises(StorageUnavailableError):
        await store.put("learner-1", _record(), expected_version=0)


@pytest.mark.asyncio
async def test_memory_store_conditional_writes() -> None:
    store = InMemoryScheduleStore()

    stored = await store.put("learner-1", _record(), expected_version=0)
    assert stored.version == 1

    with pytest.raises(VersionConflictError):
        await store.put("learner-1", _record(), expected_version=0)

    updated = await store.put("learner-1", _record(interval=1), expected_version=1)
    assert updated.version == 2
    assert await store.get("learner-1", "too-expensive") == updated
    assert await store.list("learner-2") == []
    assert await store.remove("learner-1", "too-expensive") is True
    assert await store.get("learner-1", "too-expensive") is None


@pytest.mark.asyncio
async def test_sql_store_unconditional_put_survives_concurrent_insert(session_factory) -> None:
    other_writer = SqlScheduleStore(session_factory)
    store = _StaleReadSqlStore(session_factory)
    await other_writer.put("learner-1", _record())

    stored = await store.put("learner-1", _record(interval=16, reviewed=date(2024, 1, 8)))

    assert store.stale_reads == 1
    assert stored.version == 2
    loaded = await other_writer.get("learner-1", "too-expensive")
    assert loaded.version == 2
    assert loaded.interval == 16


@pytest.mark.asyncio
async def test_memory_store_mirror_keeps_versions() -> None:
    store = InMemoryScheduleStore()

    store.mirror("learner-1", "too-expensive", _record().with_version(7))
    assert (await store.get("learner-1", "too-expensive")).version == 7

    store.mirror_learner("learner-1", [_record("b").with_version(3)])
    assert [(record.item_id, record.version) for record in await store.list("learner-1")] == [("b", 3)]

    store.mirror("learner-1", "b", None)
    assert await store.list("learner-1") == []


@pytest.mark.asyncio
async def test_fallback_store_serves_last_known_state_when_primary_is_down(caplog) -> None:
    primary = _SwitchableStore()
    fallback = InMemoryScheduleStore()
    store = FallbackScheduleStore(primary, fallback)
    first = await store.put("learner-1", _record(), expected_version=0)
    second = await store.put("learner-1", _record(interval=16), expected_version=first.version)

    primary.down = True
    with caplog.at_level(logging.WARNING, logger="spaced_review.db.schedules"):
        loaded = await store.get("learner-1", "too-expensive")
        updated = await store.put("learner-1", _record(interval=40), expected_version=second.version)

    assert loaded == second
    assert updated.version == 3
    assert updated.interval == 40
    assert "using fallback store" in caplog.text
    assert (await primary.get_while_down("learner-1", "too-expensive")).version == 2


@pytest.mark.asyncio
async def test_fallback_store_refuses_to_answer_from_empty_copy(caplog) -> None:
    primary = _UnavailableStore()
    fallback = InMemoryScheduleStore()
    store = FallbackScheduleStore(primary, fallback)

    with caplog.at_level(logging.ERROR, logger="spaced_review.db.schedules"):
        with pytest.raises(StorageUnavailableError, match="primary is down"):
            await store.get("learner-1", "too-expensive")
        with pytest.raises(StorageUnavailableError):
            await store.put("learner-1", _record(), expected_version=0)
        with pytest.raises(StorageUnavailableError):
            await store.list("learner-1")
        with pytest.raises(StorageUnavailableError):
            await store.remove("learner-1", "too-expensive")

    assert primary.calls == 4
    assert await fallback.list("learner-1") == []
    assert "no local copy exists for learner learner-1" in caplog.text


@pytest.mark.asyncio
async def test_fallback_store_listing_covers_every_item_of_learner() -> None:
    primary = _SwitchableStore()
    store = FallbackScheduleStore(primary)
    await primary.put("learner-1", _record("a"))
    await primary.put("learner-1", _record("b"))
    await primary.put("learner-2", _record("c"))
    await store.list("learner-1")

    primary.down = True

    assert (await store.get("learner-1", "a")).version == 1
    assert await store.get("learner-1", "unknown") is None
    assert await store.remove("learner-1", "b") is True
    assert [record.item_id for record in await store.list("learner-1")] == ["a"]
    with pytest.raises(StorageUnavailableError):
        await store.get("learner-2", "c")


@pytest.mark.asyncio
async def test_fallback_store_mirrors_removals() -> None:
    primary = _SwitchableStore()
    store = FallbackScheduleStore(primary)
    await store.put("learner-1", _record())
    await store.remove("learner-1", "too-expensive")

    primary.down = True

    assert await store.get("learner-1", "too-expensive") is None


@pytest.mark.asyncio
async def test_fallback_store_prefers_primary() -> None:
    primary = InMemoryScheduleStore()
    fallback = InMemoryScheduleStore()
    store = FallbackScheduleStore(primary, fallback)

    stored = await store.put("learner-1", _record())

    assert await primary.get("learner-1", "too-expensive") == stored
    assert await fallback.get("learner-1", "too-expensive") == stored


@pytest.mark.asyncio
async def test_fallback_store_does_not_hide_version_conflicts() -> None:
    primary = InMemoryScheduleStore()
    fallback = InMemoryScheduleStore()
    store = FallbackScheduleStore(primary, fallback)
    await primary.put("learner-1", _record())

    with pytest.raises(VersionConflictError):
        await store.put("learner-1", _record(), expected_version=0)

    assert await fallback.list("learner-1") == []
