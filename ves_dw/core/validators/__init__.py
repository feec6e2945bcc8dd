"""
Per-row validators for staged records.

Provides validators for required keys, column type coercion, numeric
ranges and regex patterns.
"""

from .base_validator import BaseValidator, ValidationError
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "TypeValidator",
    "RangeValidator",
    "RegexValidator",
]
