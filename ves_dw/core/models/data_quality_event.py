"""
DataQualityEvent model representing a non-fatal data quality signal raised during a merge.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class DataQualityEvent(BaseModel):
    """
    Data quality audit entry.

    Attributes:
        event_id: Auto-increment primary key
        table_name: Table being merged
        batch_id: Batch that raised the event
        record_key: Natural/business key of the affected row
        event_type: "policy_conflict" (stored milestone kept over a different
                    incoming value) or "superseded_in_batch"
        field_name: Affected column
        stored_value: Value kept (as string)
        incoming_value: Value ignored (as string)
        created_at: When the event was recorded
    """

    event_id: int | None = None
    table_name: str
    batch_id: str
    record_key: str | None = None
    event_type: Literal["policy_conflict", "superseded_in_batch"]
    field_name: str | None = None
    stored_value: str | None = None
    incoming_value: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "table_name": "fact_exam_requests",
                "batch_id": "batch_20250106_001",
                "record_key": "ER-2",
                "event_type": "policy_conflict",
                "field_name": "examiner_assigned_date",
                "stored_value": "2025-01-05",
                "incoming_value": "2025-01-02"
            }
        }
