# tests/core/test_dispatch_scenario.py
"""
Сквозные сценарии жизненного цикла водителя и проверка инвариантов
на случайной последовательности операций.
"""

from __future__ import annotations

import random

import pytest

from src.common.constants import DriverStatus
from src.common.errors import DispatchError, NoDriverAvailableError
from src.core.dispatch.service import PickupLocation
from src.core.drivers.models import Driver


def assert_invariants(driver: Driver) -> None:
    assert (driver.status == DriverStatus.ON_DELIVERY) == (driver.active_delivery_id is not None)
    stats = driver.stats
    # Периоды сбрасываются независимо, поэтому сравниваются только с итогом
    for period_count in (stats.completed_today, stats.completed_this_week, stats.completed_this_month):
        assert 0 <= period_count <= stats.total_deliveries
    assert 0 <= stats.average_rating <= 5
    assert stats.total_ratings == len(driver.ratings)
    assert stats.total_earnings >= 0


class TestFullLifecycle:
    """Полный цикл: регистрация, линия, заказ, завершение, оценка."""

    @pytest.mark.asyncio
    async def test_delivery_lifecycle(
        self, create_driver, tracker, matcher, stats_aggregator, status_service, driver_service
    ) -> None:
        driver = await create_driver(latitude=None, longitude=None, available=False)

        await tracker.update_location(driver.id, 25.2, 55.3)
        await status_service.set_available(driver.id)

        nearby = await tracker.find_nearby(25.2, 55.3, radius_km=5)
        assert [d.id for d in nearby] == [driver.id]

        assigned = await matcher.assign("order-1", PickupLocation(latitude=25.2, longitude=55.3))
        assert assigned.id == driver.id
        assert assigned.active_delivery_id == "order-1"

        # Водитель на доставке не виден в поиске свободных
        assert await tracker.find_nearby(25.2, 55.3, radius_km=5) == []

        completed = await stats_aggregator.complete_delivery(driver.id, 18, 12.50, delivery_id="order-1")
        assert completed.status == DriverStatus.AVAILABLE
        assert completed.stats.total_deliveries == 1
        assert completed.stats.average_delivery_time == 18
        assert completed.stats.total_earnings == 12.50

        rated = await stats_aggregator.add_rating(driver.id, "order-1", 5)
        assert rated.stats.average_rating == 5
        assert rated.stats.total_ratings == 1

        report = await driver_service.get_driver_stats(driver.id)
        assert report.today.deliveries == 1
        assert report.today.earnings == 12.50
        assert report.current.status == DriverStatus.AVAILABLE

        offline = await status_service.go_offline(driver.id)
        assert offline.fcm_token is None
        with pytest.raises(NoDriverAvailableError):
            await matcher.assign("order-2")

    @pytest.mark.asyncio
    async def test_soft_delete_during_delivery(
        self, create_driver, matcher, stats_aggregator, driver_service, tracker
    ) -> None:
        driver = await create_driver()
        await matcher.assign("order-1")

        await driver_service.soft_delete(driver.id)

        with pytest.raises(DispatchError):
            await stats_aggregator.complete_delivery(driver.id, 10, 5)
        assert await tracker.find_nearby(25.2, 55.3, status=DriverStatus.OFFLINE) == []
        assert (await driver_service.get_statistics()).total_drivers == 0


class TestRandomizedInvariants:
    """Случайные последовательности операций не нарушают инварианты."""

    @pytest.mark.asyncio
    async def test_random_operations(
        self, create_driver, tracker, matcher, stats_aggregator, status_service, driver_service, repository, clock
    ) -> None:
        rng = random.Random(20250301)
        drivers = [await create_driver(rng.uniform(25.0, 25.4), rng.uniform(55.1, 55.5)) for _ in range(5)]
        ids = [d.id for d in drivers]
        order_counter = 0

        for step in range(300):
            driver_id = rng.choice(ids)
            action = rng.choice(["available", "offline", "location", "assign", "complete", "rate", "reset"])
            try:
                if action == "available":
                    await status_service.set_available(driver_id)
                elif action == "offline":
                    await status_service.go_offline(driver_id)
                elif action == "location":
                    await tracker.update_location(driver_id, rng.uniform(-95, 95), rng.uniform(-185, 185))
                elif action == "assign":
                    order_counter += 1
                    await matcher.assign(f"order-{order_counter}")
                elif action == "complete":
                    await stats_aggregator.complete_delivery(driver_id, rng.uniform(1, 60), rng.uniform(0, 30))
                elif action == "rate":
                    await stats_aggregator.add_rating(driver_id, f"rate-{step}", rng.choice([1, 2, 3, 4, 5, 6]))
                else:
                    await stats_aggregator.reset_period(rng.choice(["daily", "weekly", "monthly"]))
            except DispatchError:
                pass
            clock.advance(rng.uniform(0, 30))

            for driver in await repository.list_all():
                assert_invariants(driver)

        # Одна доставка не назначена двум водителям
        active = [d.active_delivery_id for d in await driver_service.list_drivers() if d.active_delivery_id]
        assert len(active) == len(set(active))
