"""
ValidationResult model representing the outcome of validating a staged record (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ValidationResult(BaseModel):
    """
    Outcome of validating a staged record (in-memory only).

    Attributes:
        record_key: Rendered business/natural key (None if missing)
        passed: Overall validation status
        failed_rules: Rules that failed with severity "error"
        error_messages: Messages for the failed rules
        warnings: Rules that failed with severity "warning"
        payload: Coerced column values (empty when the record failed)
    """

    record_key: str | None = None
    passed: bool
    failed_rules: list[str] = Field(default_factory=list)
    error_messages: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator('failed_rules')
    @classmethod
    def check_passed_consistency(cls, v, info):
        """Validate that passed=True implies failed_rules is empty."""
        if info.data.get('passed') and len(v) > 0:
            raise ValueError("passed=True but failed_rules is not empty")
        return v
