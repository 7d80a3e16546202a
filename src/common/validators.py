# src/common/validators.py
"""
Проверки числовых входных данных.
Нарушение диапазона поднимает ValidationError до любого изменения состояния.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from src.common.errors import ValidationError


def require_number(
    field: str,
    value: Any,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    exclusive_maximum: bool = False,
) -> float:
    """
    Проверяет, что значение конечное число в заданном диапазоне.

    Args:
        field: Имя поля (для сообщения об ошибке)
        value: Проверяемое значение
        minimum: Нижняя граница (включительно)
        maximum: Верхняя граница
        exclusive_maximum: Верхняя граница не входит в диапазон

    Returns:
        Значение, приведённое к float
    """
    # bool является подклассом int, но координатой быть не может
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Поле {field} должно быть числом", field=field, value=repr(value))

    number = float(value)
    if not math.isfinite(number):
        raise ValidationError(f"Поле {field} должно быть конечным числом", field=field, value=repr(value))

    if minimum is not None and number < minimum:
        raise ValidationError(
            f"Поле {field} должно быть не меньше {minimum}", field=field, value=number
        )
    if maximum is not None:
        too_big = number >= maximum if exclusive_maximum else number > maximum
        if too_big:
            bound = "меньше" if exclusive_maximum else "не больше"
            raise ValidationError(
                f"Поле {field} должно быть {bound} {maximum}", field=field, value=number
            )
    return number


def optional_number(
    field: str,
    value: Any,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    exclusive_maximum: bool = False,
) -> Optional[float]:
    """То же, что require_number, но None пропускается."""
    if value is None:
        return None
    return require_number(
        field,
        value,
        minimum=minimum,
        maximum=maximum,
        exclusive_maximum=exclusive_maximum,
    )


def require_text(field: str, value: Any, *, max_length: Optional[int] = None) -> str:
    """Непустая строка (после strip) ограниченной длины."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Поле {field} не может быть пустым", field=field)
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"Поле {field} длиннее {max_length} символов", field=field, length=len(value)
        )
    return value
