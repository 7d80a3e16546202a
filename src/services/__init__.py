# src/services/__init__.py
"""
HTTP-сервисы приложения.

Сервисы:
- dispatch: состояние водителей, геолокация, назначение доставок, статистика
"""

__all__: list[str] = []
