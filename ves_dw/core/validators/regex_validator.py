"""
RegexValidator - whole-value pattern checks, e.g. veteran_id format.
"""

import re
from typing import Any

from .base_validator import BaseValidator


class RegexValidator(BaseValidator):
    """
    The value, rendered as text, must match `pattern` in full.

    Parameters:
    - pattern: Regular expression (string or compiled Pattern)
    - ignore_case: Match case-insensitively (default False)
    """

    rule_type = "regex"

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("RegexValidator requires 'pattern' parameter")
        if isinstance(pattern, re.Pattern):
            self.pattern = pattern
            return

        flags = re.IGNORECASE if self.parameters.get("ignore_case") else 0
        try:
            self.pattern = re.compile(str(pattern), flags)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern '{pattern}': {e}") from e

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        # Nulls are the required_field validator's concern
        if value is None:
            return
        text = value if isinstance(value, str) else str(value)
        if self.pattern.fullmatch(text) is None:
            self.fail(f"Value '{text}' does not match pattern '{self.pattern.pattern}'")
