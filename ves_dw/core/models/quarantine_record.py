"""
QuarantineRecord model representing a rejected staged row with its error context.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator


class QuarantineRecord(BaseModel):
    """
    A staged row that could not be loaded, kept for later reprocessing.

    Attributes:
        quarantine_id: Auto-increment primary key
        table_name: Target table the row was meant for
        batch_id: Batch the row arrived in
        record_key: Rendered business key (may be missing if malformed)
        raw_payload: Original staged values
        failed_rules: Rule names that failed
        error_messages: Corresponding error messages
        quarantined_at: When quarantined
        reviewed: Whether an analyst has reviewed it
    """

    quarantine_id: int | None = None
    table_name: str
    batch_id: str
    record_key: str | None = None
    raw_payload: dict[str, Any]
    failed_rules: list[str] = Field(..., min_length=1)
    error_messages: list[str] = Field(..., min_length=1)
    quarantined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reviewed: bool = False

    @field_validator('error_messages')
    @classmethod
    def check_arrays_same_length(cls, v, info):
        """Validate that failed_rules and error_messages have the same length."""
        failed_rules = info.data.get('failed_rules', [])
        if len(v) != len(failed_rules):
            raise ValueError(
                f"error_messages length ({len(v)}) must match failed_rules length ({len(failed_rules)})"
            )
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "table_name": "dim_veterans",
                "batch_id": "batch_20250103_001",
                "record_key": None,
                "raw_payload": {"veteran_id": None, "disability_rating": "thirty"},
                "failed_rules": ["disability_rating_type_check", "veteran_id_required"],
                "error_messages": [
                    "[type_check] disability_rating: Cannot coerce str 'thirty' to integer",
                    "[required_field] veteran_id: Field value is null"
                ]
            }
        }
