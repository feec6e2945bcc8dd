"""
TypeValidator - coerces staged values to their configured column type.

Staged files arrive with loosely typed values ("2025-01-03", "30", "Y").
Coercion happens before hashing and merging so that the same logical value
always hashes and compares the same way.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from ves_dw.core.metadata import ColumnType

from .base_validator import BaseValidator, ValidationError

TRUE_STRINGS = ("true", "t", "yes", "y", "1")
FALSE_STRINGS = ("false", "f", "no", "n", "0")
# PostgreSQL numeric: digits before and after the decimal point
NUMERIC_WEIGHT_DIGITS = 131072
NUMERIC_SCALE_DIGITS = 16383


def _finite(number: Decimal) -> Decimal:
    if not number.is_finite():
        raise ValueError(f"{number} is not a finite number")
    return number


class TypeValidator(BaseValidator):
    """
    Validates that a column value can be coerced to the expected column type.

    Supported types: text, integer, bigint, numeric, boolean, date, timestamp.
    Blank strings coerce to None for every type except text.
    """

    rule_type = "type_check"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        try:
            self.expected_type = ColumnType(expected_type)
        except ValueError:
            raise ValueError(f"Unsupported type: {expected_type}") from None

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        self.coerce(value)

    def coerce(self, value: Any) -> Any:
        """
        Coerce a value to the expected type.

        Returns:
            The coerced value (None stays None)

        Raises:
            ValidationError: If the value cannot be represented in the column type
        """
        if value is None:
            return None

        if isinstance(value, str) and self.expected_type != ColumnType.TEXT:
            value = value.strip()
            if value == "":
                return None

        try:
            return self._coerce(value)
        except (ValueError, TypeError, ArithmeticError) as e:
            raise ValidationError(
                self.rule_type,
                self.field_name,
                f"Cannot coerce {type(value).__name__} {value!r} to {self.expected_type.value}: {e}",
            ) from e

    def _coerce(self, value: Any) -> Any:
        t = self.expected_type

        if t == ColumnType.TEXT:
            return value if isinstance(value, str) else str(value)

        if t in (ColumnType.INTEGER, ColumnType.BIGINT):
            return self._to_int(value)

        if t == ColumnType.NUMERIC:
            if isinstance(value, bool):
                raise TypeError("boolean is not numeric")
            if isinstance(value, float):
                number = Decimal(repr(value))
            else:
                number = Decimal(value) if isinstance(value, (int, Decimal)) else Decimal(str(value))
            number = _finite(number)
            if number and not -NUMERIC_SCALE_DIGITS <= number.adjusted() < NUMERIC_WEIGHT_DIGITS:
                raise ValueError("value is out of numeric range")
            return number

        if t == ColumnType.BOOLEAN:
            return self._to_bool(value)

        if t == ColumnType.DATE:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            text = str(value)
            try:
                return date.fromisoformat(text)
            except ValueError:
                return self._parse_datetime(text).date()

        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        parsed = self._parse_datetime(str(value))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    @staticmethod
    def _to_int(value: Any) -> int:
        if isinstance(value, bool):
            raise TypeError("boolean is not an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            number = Decimal(repr(value))
        elif isinstance(value, Decimal):
            number = value
        else:
            text = str(value)
            try:
                return int(text)
            except ValueError:
                number = Decimal(text)

        number = _finite(number)
        if number != number.to_integral_value():
            raise ValueError("value has a fractional part")
        # Wider than bigint; int() of a huge exponent would build the whole number
        if number.adjusted() >= 19:
            raise ValueError("value is out of integer range")
        return int(number)

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            if value.lower() in TRUE_STRINGS:
                return True
            if value.lower() in FALSE_STRINGS:
                return False
        raise ValueError(f"Cannot parse {value!r} as boolean")

    @staticmethod
    def _parse_datetime(text: str) -> datetime:
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
