# src/core/status/__init__.py
"""
Домен статусов водителя.
"""

from src.core.status.machine import DriverStatusMachine, status_changed_event
from src.core.status.service import StatusService

__all__ = [
    "DriverStatusMachine",
    "status_changed_event",
    "StatusService",
]
