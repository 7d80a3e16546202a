# src/core/stats/__init__.py
"""
Домен статистики водителей.
"""

from src.core.stats.service import StatsAggregator, reset_stats_period, running_mean

__all__ = ["StatsAggregator", "reset_stats_period", "running_mean"]
