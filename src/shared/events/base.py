# src/shared/events/base.py
"""
Базовая схема доменного события.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class EventMetadata(BaseModel):
    """Трассировка и дедупликация на стороне потребителя."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str | None = None
    source_service: str = "driver_dispatch"
    version: int = 1


class DomainEvent(BaseModel):
    """
    Событие подсистемы водителей.

    event_type служит routing key в topic exchange, потребители
    отбрасывают повторы по metadata.event_id.
    """

    event_type: str = ""
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    def to_json(self) -> str:
        return self.model_dump_json()

    @property
    def event_id(self) -> str:
        return self.metadata.event_id

    @property
    def timestamp(self) -> datetime:
        return self.metadata.timestamp
