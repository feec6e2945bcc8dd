"""
Base validator interface for per-row checks on staged records.

A validator checks one column of one staged record and raises
ValidationError; the rule engine turns those into a ValidationResult.
"""

from abc import ABC, abstractmethod
from typing import Any, NoReturn


class ValidationError(Exception):
    """Raised when a staged value fails a check."""

    def __init__(self, rule_name: str, field_name: str, message: str):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class BaseValidator(ABC):
    """
    One column check, configured from a validation rule's params.

    Subclasses set `rule_type` to the rule type they implement.
    """

    rule_type: str = ""

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Check `value`, the record's value for this column.

        Raises:
            ValidationError: If the value fails the check
        """

    def fail(self, message: str) -> NoReturn:
        raise ValidationError(self.rule_type, self.field_name, message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"
