# tests/core/test_status_machine.py
"""
Тесты для машины состояний водителя.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.common.constants import DriverStatus
from src.common.errors import ConflictError
from src.core.drivers.models import Driver, VehicleInfo
from src.core.status.machine import DriverStatusMachine, status_changed_event

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _driver(status: DriverStatus = DriverStatus.OFFLINE, **overrides) -> Driver:
    data = dict(
        auth_uid="uid-1",
        name="Ahmed",
        email="a@example.com",
        phone="+971",
        vehicle=VehicleInfo(vehicle_type="bike", plate_number="A1"),
        status=status,
        is_documents_verified=True,
        fcm_token="token",
    )
    if status == DriverStatus.ON_DELIVERY:
        data["active_delivery_id"] = "ord-1"
    data.update(overrides)
    return Driver(**data)


class TestCanTransition:
    """Таблица допустимых переходов."""

    @pytest.mark.parametrize(
        "current, new, allowed",
        [
            ("offline", "available", True),
            ("offline", "on_delivery", False),
            ("available", "on_delivery", True),
            ("available", "offline", True),
            ("on_delivery", "available", True),
            ("on_delivery", "offline", True),
            ("on_delivery", "on_delivery", False),
            ("unknown", "available", False),
        ],
    )
    def test_table(self, current: str, new: str, allowed: bool) -> None:
        assert DriverStatusMachine.can_transition(current, new) is allowed


class TestGoAvailable:
    """offline -> available."""

    def test_from_offline(self) -> None:
        driver = _driver()

        old = DriverStatusMachine.go_available(driver, NOW)

        assert old == DriverStatus.OFFLINE
        assert driver.status == DriverStatus.AVAILABLE
        assert driver.updated_at == NOW

    def test_already_available_is_noop(self) -> None:
        driver = _driver(DriverStatus.AVAILABLE)
        before = driver.updated_at

        old = DriverStatusMachine.go_available(driver, NOW)

        assert old == DriverStatus.AVAILABLE
        assert driver.updated_at == before

    def test_on_delivery_rejected(self) -> None:
        driver = _driver(DriverStatus.ON_DELIVERY)

        with pytest.raises(ConflictError):
            DriverStatusMachine.go_available(driver, NOW)
        assert driver.status == DriverStatus.ON_DELIVERY
        assert driver.active_delivery_id == "ord-1"

    def test_disabled_driver_rejected(self) -> None:
        driver = _driver(is_active=False)

        with pytest.raises(ConflictError):
            DriverStatusMachine.go_available(driver, NOW)


class TestDelivery:
    """available -> on_delivery -> available."""

    def test_start_and_finish(self) -> None:
        driver = _driver(DriverStatus.AVAILABLE)

        assert DriverStatusMachine.start_delivery(driver, "ord-9", NOW) == DriverStatus.AVAILABLE
        assert driver.status == DriverStatus.ON_DELIVERY
        assert driver.active_delivery_id == "ord-9"

        assert DriverStatusMachine.finish_delivery(driver, NOW) == DriverStatus.ON_DELIVERY
        assert driver.status == DriverStatus.AVAILABLE
        assert driver.active_delivery_id is None

    @pytest.mark.parametrize("status", [DriverStatus.OFFLINE, DriverStatus.ON_DELIVERY])
    def test_start_requires_available(self, status: DriverStatus) -> None:
        driver = _driver(status)

        with pytest.raises(ConflictError):
            DriverStatusMachine.start_delivery(driver, "ord-9", NOW)

    def test_start_requires_verified_documents(self) -> None:
        driver = _driver(DriverStatus.AVAILABLE, is_documents_verified=False)

        with pytest.raises(ConflictError):
            DriverStatusMachine.start_delivery(driver, "ord-9", NOW)
        assert driver.status == DriverStatus.AVAILABLE

    def test_finish_requires_on_delivery(self) -> None:
        with pytest.raises(ConflictError):
            DriverStatusMachine.finish_delivery(_driver(DriverStatus.AVAILABLE), NOW)


class TestGoOffline:
    """Уход с линии из любого статуса."""

    @pytest.mark.parametrize("status", list(DriverStatus))
    def test_from_any_status(self, status: DriverStatus) -> None:
        driver = _driver(status)

        old = DriverStatusMachine.go_offline(driver, NOW)

        assert old == status
        assert driver.status == DriverStatus.OFFLINE
        assert driver.active_delivery_id is None
        assert driver.fcm_token is None


class TestStatusChangedEvent:
    """Событие смены статуса."""

    def test_event_when_changed(self) -> None:
        driver = _driver(DriverStatus.ON_DELIVERY)

        event = status_changed_event(driver, DriverStatus.AVAILABLE)

        assert event.old_status == "available"
        assert event.new_status == "on_delivery"
        assert event.active_delivery_id == "ord-1"

    def test_none_when_unchanged(self) -> None:
        assert status_changed_event(_driver(), DriverStatus.OFFLINE) is None
