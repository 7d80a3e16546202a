# tests/core/test_memory_repository.py
"""
Тесты для in-memory хранилища водителей.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.common.constants import DriverStatus
from src.common.errors import ConflictError, NotFoundError
from src.core.drivers.models import Driver, DriverLocation, VehicleInfo
from src.core.drivers.repository import InMemoryDriverRepository

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _driver(index: int, **overrides) -> Driver:
    data = dict(
        auth_uid=f"uid-{index}",
        name=f"Driver {index}",
        email=f"driver{index}@example.com",
        phone="+971500000000",
        vehicle=VehicleInfo(vehicle_type="car", plate_number=f"P{index}"),
        created_at=T0 + timedelta(seconds=index),
    )
    data.update(overrides)
    return Driver(**data)


class TestCreateAndRead:
    """Создание и чтение записей."""

    @pytest.mark.asyncio
    async def test_create_and_get(self) -> None:
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        loaded = await repo.get(driver.id)

        assert loaded == driver
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_auth_uid_conflict(self) -> None:
        repo = InMemoryDriverRepository()
        await repo.create(_driver(1))

        with pytest.raises(ConflictError):
            await repo.create(_driver(2, auth_uid="uid-1"))

    @pytest.mark.asyncio
    async def test_duplicate_email_conflict(self) -> None:
        repo = InMemoryDriverRepository()
        await repo.create(_driver(1))

        with pytest.raises(ConflictError):
            await repo.create(_driver(2, email="driver1@example.com"))

    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self) -> None:
        """Изменение снимка не влияет на хранимую запись."""
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        snapshot = await repo.get(driver.id)
        snapshot.name = "Changed"
        snapshot.stats.total_deliveries = 99

        stored = await repo.get(driver.id)
        assert stored.name == "Driver 1"
        assert stored.stats.total_deliveries == 0

    @pytest.mark.asyncio
    async def test_deleted_hidden_by_default(self) -> None:
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1, is_deleted=True))

        assert await repo.get(driver.id) is None
        assert (await repo.get(driver.id, include_deleted=True)).id == driver.id
        assert await repo.list_all() == []
        assert len(await repo.list_all(include_deleted=True)) == 1

    @pytest.mark.asyncio
    async def test_list_all_newest_first(self) -> None:
        repo = InMemoryDriverRepository()
        for i in (1, 3, 2):
            await repo.create(_driver(i))

        names = [d.name for d in await repo.list_all()]

        assert names == ["Driver 3", "Driver 2", "Driver 1"]


class TestQueries:
    """Запросы по прямоугольнику и по готовности к назначению."""

    @pytest.mark.asyncio
    async def test_find_in_box(self) -> None:
        repo = InMemoryDriverRepository()
        inside = await repo.create(_driver(
            1, status=DriverStatus.AVAILABLE,
            current_location=DriverLocation(latitude=25.2, longitude=55.3),
        ))
        await repo.create(_driver(
            2, status=DriverStatus.AVAILABLE,
            current_location=DriverLocation(latitude=26.5, longitude=55.3),
        ))
        await repo.create(_driver(
            3, status=DriverStatus.OFFLINE,
            current_location=DriverLocation(latitude=25.2, longitude=55.3),
        ))
        await repo.create(_driver(4, status=DriverStatus.AVAILABLE))

        found = await repo.find_in_box(25.0, 25.4, 55.1, 55.5, DriverStatus.AVAILABLE)

        assert [d.id for d in found] == [inside.id]

    @pytest.mark.asyncio
    async def test_find_dispatchable_least_loaded_first(self) -> None:
        repo = InMemoryDriverRepository()
        busy = _driver(1, status=DriverStatus.AVAILABLE, is_documents_verified=True)
        busy.stats.total_deliveries = 7
        fresh = _driver(2, status=DriverStatus.AVAILABLE, is_documents_verified=True)
        unverified = _driver(3, status=DriverStatus.AVAILABLE)
        for d in (busy, fresh, unverified):
            await repo.create(d)

        found = await repo.find_dispatchable()

        assert [d.id for d in found] == [fresh.id, busy.id]


class TestLocked:
    """Эксклюзивный доступ к записи."""

    @pytest.mark.asyncio
    async def test_commit_on_success(self) -> None:
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        async with repo.locked(driver.id) as working:
            working.name = "Renamed"

        assert (await repo.get(driver.id)).name == "Renamed"

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self) -> None:
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        with pytest.raises(RuntimeError):
            async with repo.locked(driver.id) as working:
                working.name = "Renamed"
                working.stats.total_deliveries = 5
                raise RuntimeError("boom")

        stored = await repo.get(driver.id)
        assert stored.name == "Driver 1"
        assert stored.stats.total_deliveries == 0

    @pytest.mark.asyncio
    async def test_invariant_violation_not_committed(self) -> None:
        """Запись, нарушающая инвариант статуса, не сохраняется."""
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        with pytest.raises(ValueError):
            async with repo.locked(driver.id) as working:
                working.status = DriverStatus.ON_DELIVERY

        assert (await repo.get(driver.id)).status == DriverStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_email_taken_not_committed(self) -> None:
        repo = InMemoryDriverRepository()
        await repo.create(_driver(1))
        second = await repo.create(_driver(2))

        with pytest.raises(ConflictError):
            async with repo.locked(second.id) as working:
                working.email = "Driver1@Example.com"
                working.name = "Renamed"

        stored = await repo.get(second.id)
        assert stored.email == "driver2@example.com"
        assert stored.name == "Driver 2"

    @pytest.mark.asyncio
    async def test_deleted_driver_email_stays_taken(self) -> None:
        repo = InMemoryDriverRepository()
        first = await repo.create(_driver(1))
        second = await repo.create(_driver(2))
        async with repo.locked(first.id) as working:
            working.is_deleted = True

        with pytest.raises(ConflictError):
            async with repo.locked(second.id) as working:
                working.email = "driver1@example.com"

    @pytest.mark.asyncio
    async def test_unknown_driver(self) -> None:
        repo = InMemoryDriverRepository()

        with pytest.raises(NotFoundError):
            async with repo.locked("missing"):
                pass

    @pytest.mark.asyncio
    async def test_deleted_driver(self) -> None:
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1, is_deleted=True))

        with pytest.raises(NotFoundError):
            async with repo.locked(driver.id):
                pass

        async with repo.locked(driver.id, include_deleted=True) as working:
            assert working.is_deleted

    @pytest.mark.asyncio
    async def test_lock_timeout_raises_conflict(self) -> None:
        repo = InMemoryDriverRepository(lock_timeout=0.05)
        driver = await repo.create(_driver(1))
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with repo.locked(driver.id):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()
        try:
            with pytest.raises(ConflictError):
                async with repo.locked(driver.id):
                    pass
        finally:
            release.set()
            await task

        # Блокировка освобождена, запись снова доступна
        async with repo.locked(driver.id) as working:
            assert working.id == driver.id

    @pytest.mark.asyncio
    async def test_serializes_concurrent_updates(self) -> None:
        """Параллельные инкременты не теряются."""
        repo = InMemoryDriverRepository()
        driver = await repo.create(_driver(1))

        async def increment() -> None:
            async with repo.locked(driver.id) as working:
                value = working.stats.total_deliveries
                await asyncio.sleep(0)
                working.stats.total_deliveries = value + 1

        await asyncio.gather(*(increment() for _ in range(20)))

        assert (await repo.get(driver.id)).stats.total_deliveries == 20

    @pytest.mark.asyncio
    async def test_different_drivers_do_not_block(self) -> None:
        repo = InMemoryDriverRepository(lock_timeout=0.05)
        first = await repo.create(_driver(1))
        second = await repo.create(_driver(2))

        async with repo.locked(first.id):
            async with repo.locked(second.id) as working:
                working.name = "Second"

        assert (await repo.get(second.id)).name == "Second"
