# src/core/__init__.py
"""
Доменный слой (Core Domain).
Состояние водителей, геолокация, статусы, назначение и статистика.
"""

from src.core.drivers import Driver, DriverService
from src.core.dispatch import DispatchMatcher
from src.core.stats import StatsAggregator
from src.core.status import StatusService
from src.core.tracking import LocationTracker

__all__ = [
    "Driver",
    "DriverService",
    "DispatchMatcher",
    "StatsAggregator",
    "StatusService",
    "LocationTracker",
]
