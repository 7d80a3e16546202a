# src/core/dispatch/__init__.py
"""
Домен диспетчеризации доставок.
"""

from src.core.dispatch.service import DispatchMatcher, PickupLocation

__all__ = ["DispatchMatcher", "PickupLocation"]
