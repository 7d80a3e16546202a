# tests/common/test_validators.py
"""
Тесты для проверок входных чисел и строк.
"""

import math

import pytest

from src.common.errors import ValidationError
from src.common.validators import optional_number, require_number, require_text


class TestRequireNumber:
    """Тесты для require_number."""

    def test_accepts_int_and_float(self) -> None:
        assert require_number("lat", 25) == 25.0
        assert isinstance(require_number("lat", 25), float)
        assert require_number("lat", 25.5) == 25.5

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_rejects_non_finite(self, value: float) -> None:
        with pytest.raises(ValidationError) as exc_info:
            require_number("latitude", value)
        assert exc_info.value.details["field"] == "latitude"

    @pytest.mark.parametrize("value", [True, "25.2", None, [1]])
    def test_rejects_non_numbers(self, value) -> None:
        with pytest.raises(ValidationError):
            require_number("latitude", value)

    def test_inclusive_bounds(self) -> None:
        assert require_number("lat", -90, minimum=-90, maximum=90) == -90.0
        assert require_number("lat", 90, minimum=-90, maximum=90) == 90.0

        with pytest.raises(ValidationError):
            require_number("lat", 90.0001, minimum=-90, maximum=90)
        with pytest.raises(ValidationError):
            require_number("lat", -90.0001, minimum=-90, maximum=90)

    def test_exclusive_maximum(self) -> None:
        assert require_number("heading", 359.9, minimum=0, maximum=360, exclusive_maximum=True) == 359.9

        with pytest.raises(ValidationError):
            require_number("heading", 360, minimum=0, maximum=360, exclusive_maximum=True)


class TestOptionalNumber:
    """Тесты для optional_number."""

    def test_none_passes(self) -> None:
        assert optional_number("speed", None, minimum=0) is None

    def test_value_checked(self) -> None:
        assert optional_number("speed", 12, minimum=0) == 12.0
        with pytest.raises(ValidationError):
            optional_number("speed", -1, minimum=0)


class TestRequireText:
    """Тесты для require_text."""

    def test_strips_value(self) -> None:
        assert require_text("order_id", "  ord-1 ") == "ord-1"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, value) -> None:
        with pytest.raises(ValidationError):
            require_text("order_id", value)

    def test_max_length(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            require_text("fcm_token", "x" * 11, max_length=10)
        assert exc_info.value.details["length"] == 11
