"""
RangeValidator - bounds checks on coerced numeric or date values.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from .base_validator import BaseValidator

NUMERIC_TYPES = (int, float, Decimal)


class RangeValidator(BaseValidator):
    """
    Inclusive bounds, e.g. disability_rating 0..100 or sla_days_allowed >= 0.

    Runs after type coercion, so the value is already an int, Decimal or
    date. Date columns take date bounds (YAML parses 1900-01-01 as a date).

    Parameters:
    - min: Minimum value (inclusive)
    - max: Maximum value (inclusive)
    """

    rule_type = "range"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        if self.min_value is None and self.max_value is None:
            raise ValueError("RangeValidator requires at least one of: min, max")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None:
            return
        if not self._comparable(value):
            self.fail(f"Value {value!r} ({type(value).__name__}) cannot be range-checked")

        if self.min_value is not None and value < self.min_value:
            self.fail(f"Value {value} is less than minimum {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            self.fail(f"Value {value} exceeds maximum {self.max_value}")

    def _comparable(self, value: Any) -> bool:
        bounds = [b for b in (self.min_value, self.max_value) if b is not None]
        if isinstance(value, bool):
            return False
        if isinstance(value, NUMERIC_TYPES):
            return all(isinstance(b, NUMERIC_TYPES) and not isinstance(b, bool) for b in bounds)
        if isinstance(value, date):
            # datetime is a date subclass; compare like with like
            return all(isinstance(b, date) and type(b) is type(value) for b in bounds)
        return False
