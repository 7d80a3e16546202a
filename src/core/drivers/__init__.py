# src/core/drivers/__init__.py
"""
Домен водителей.
Модели, хранилище и административный сервис.
"""

from src.core.drivers.models import (
    Driver,
    DriverLocation,
    DriverProfileUpdate,
    DriverRating,
    DriverRegistrationDTO,
    DriverStats,
    DriverStatsReport,
    DriverSummary,
    FleetStatistics,
    VehicleInfo,
)
from src.core.drivers.repository import (
    DriverRepository,
    InMemoryDriverRepository,
    PostgresDriverRepository,
)
from src.core.drivers.service import DriverService

__all__ = [
    "Driver",
    "DriverLocation",
    "DriverProfileUpdate",
    "DriverRating",
    "DriverRegistrationDTO",
    "DriverStats",
    "DriverStatsReport",
    "DriverSummary",
    "FleetStatistics",
    "VehicleInfo",
    "DriverRepository",
    "InMemoryDriverRepository",
    "PostgresDriverRepository",
    "DriverService",
]
