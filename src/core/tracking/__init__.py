# src/core/tracking/__init__.py
"""
Домен геолокации водителей.
"""

from src.core.tracking.service import LocationTracker

__all__ = ["LocationTracker"]
