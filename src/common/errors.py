# src/common/errors.py
"""
Иерархия ошибок подсистемы водителей.

Все ошибки возникают до изменения состояния: операция либо применяется
целиком, либо не применяется вовсе.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class DispatchError(Exception):
    """Базовая ошибка подсистемы."""

    code: str = "dispatch_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Представление ошибки для API."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DispatchError):
    """Некорректные входные данные (координаты, оценка и т.п.)."""

    code = "validation_error"

    @classmethod
    def from_pydantic(cls, message: str, exc: PydanticValidationError) -> "ValidationError":
        """Оборачивает ошибку валидации Pydantic, оставляя сериализуемые поля."""
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return cls(message, errors=errors)


class ConflictError(DispatchError):
    """Недопустимый переход статуса или конфликт конкурентного изменения."""

    code = "conflict"


class NotFoundError(DispatchError):
    """Водитель не найден или удалён."""

    code = "not_found"


class NoDriverAvailableError(DispatchError):
    """Нет свободных водителей для заказа. Не является сбоем."""

    code = "no_driver_available"
