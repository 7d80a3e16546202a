# src/shared/__init__.py
"""
Общий код сервиса.

Модули:
- events: схемы доменных событий RabbitMQ
- models: общие модели ответов HTTP API
"""

__all__: list[str] = []
