# src/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

Все события идемпотентны и содержат event_id для дедупликации.
"""

from src.shared.events.base import DomainEvent, EventMetadata
from src.shared.events.driver_events import (
    DeliveryAssigned,
    DeliveryCompleted,
    DriverDeleted,
    DriverRated,
    DriverRegistered,
    DriverStatusChanged,
)

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "DriverRegistered",
    "DriverStatusChanged",
    "DeliveryAssigned",
    "DeliveryCompleted",
    "DriverRated",
    "DriverDeleted",
]
