# src/shared/events/driver_events.py
"""
События домена водителей и диспетчеризации доставок.
"""

from __future__ import annotations

from typing import Literal

from src.shared.events.base import DomainEvent


class DriverRegistered(DomainEvent):
    """Событие: водитель зарегистрирован."""

    event_type: Literal["driver.registered"] = "driver.registered"

    driver_id: str
    auth_uid: str
    vehicle_type: str


class DriverStatusChanged(DomainEvent):
    """Событие: статус водителя изменён."""

    event_type: Literal["driver.status_changed"] = "driver.status_changed"

    driver_id: str
    old_status: str
    new_status: str  # available, on_delivery, offline
    active_delivery_id: str | None = None


class DeliveryAssigned(DomainEvent):
    """
    Событие: доставка назначена водителю.
    fcm_token передаётся внешнему сервису push-уведомлений.
    """

    event_type: Literal["delivery.assigned"] = "delivery.assigned"

    driver_id: str
    order_id: str
    fcm_token: str | None = None


class DeliveryCompleted(DomainEvent):
    """Событие: доставка завершена."""

    event_type: Literal["delivery.completed"] = "delivery.completed"

    driver_id: str
    order_id: str
    earnings: float
    delivery_time_minutes: float


class DriverRated(DomainEvent):
    """Событие: водитель получил оценку."""

    event_type: Literal["driver.rated"] = "driver.rated"

    driver_id: str
    order_id: str
    rating: float
    average_rating: float


class DriverDeleted(DomainEvent):
    """Событие: водитель мягко удалён."""

    event_type: Literal["driver.deleted"] = "driver.deleted"

    driver_id: str
