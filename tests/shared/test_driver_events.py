# tests/shared/test_driver_events.py
"""
Тесты для схем доменных событий.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.shared.events import (
    DeliveryAssigned,
    DeliveryCompleted,
    DomainEvent,
    DriverDeleted,
    DriverRated,
    DriverRegistered,
    DriverStatusChanged,
)


class TestDomainEvent:
    """Базовое событие."""

    def test_metadata_defaults(self) -> None:
        event = DomainEvent()

        assert event.event_id
        assert event.timestamp.tzinfo is not None
        assert event.metadata.source_service == "driver_dispatch"
        assert event.metadata.version == 1

    def test_unique_event_ids(self) -> None:
        assert DomainEvent().event_id != DomainEvent().event_id

    def test_json_keeps_metadata(self) -> None:
        event = DeliveryCompleted(driver_id="d-1", order_id="ord-1", earnings=12.5, delivery_time_minutes=18)

        data = json.loads(event.to_json())

        assert data["event_type"] == "delivery.completed"
        assert data["metadata"]["event_id"] == event.event_id
        assert DeliveryCompleted.model_validate_json(event.to_json()) == event


class TestDriverEvents:
    """События домена водителей."""

    @pytest.mark.parametrize(
        "event_cls, event_type",
        [
            (DriverRegistered, "driver.registered"),
            (DriverStatusChanged, "driver.status_changed"),
            (DeliveryAssigned, "delivery.assigned"),
            (DeliveryCompleted, "delivery.completed"),
            (DriverRated, "driver.rated"),
            (DriverDeleted, "driver.deleted"),
        ],
    )
    def test_routing_keys(self, event_cls, event_type: str) -> None:
        assert event_cls.model_fields["event_type"].default == event_type

    def test_event_type_is_fixed(self) -> None:
        with pytest.raises(PydanticValidationError):
            DriverDeleted(driver_id="d-1", event_type="driver.registered")

    def test_status_changed_optional_delivery(self) -> None:
        event = DriverStatusChanged(driver_id="d-1", old_status="available", new_status="offline")
        assert event.active_delivery_id is None

    def test_rated_fields(self) -> None:
        event = DriverRated(driver_id="d-1", order_id="ord-1", rating=4, average_rating=4.5)
        assert event.rating == 4.0
