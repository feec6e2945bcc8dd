"""
RequiredFieldValidator - a column must be present and hold a value.

Business keys and natural keys always get this check.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Rejects a missing column, a null, or a blank string.

    Parameters:
    - allow_empty_string: accept "" and whitespace-only strings (default False)
    """

    rule_type = "required_field"

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if self.field_name not in record:
            self.fail("Field is missing from record")
        if value is None:
            self.fail("Field value is null")
        if isinstance(value, str) and not value.strip() and not self.parameters.get("allow_empty_string"):
            self.fail("Field value is empty string")
