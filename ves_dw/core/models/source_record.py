"""
SourceRecord model representing one staged row for one business entity (ephemeral).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

RESERVED_FIELDS = ("source_system", "arrival_ts")


class SourceRecord(BaseModel):
    """
    A staged row arriving from an upstream system, consumed once per batch.

    Attributes:
        values: Column values keyed by column name (keys and attributes)
        source_system: Upstream system identifier (e.g. "VBMS", "VES_OMS")
        arrival_ts: When the row was extracted; orders duplicates within a batch
    """

    values: dict[str, Any]
    source_system: str | None = None
    arrival_ts: datetime | None = None

    @classmethod
    def from_row(cls, row: "SourceRecord | dict[str, Any]") -> "SourceRecord":
        """
        Build a SourceRecord from a flat staged row.

        `source_system` and `arrival_ts` are lifted out of the row; every
        other key is a column value.
        """
        if isinstance(row, SourceRecord):
            return row
        values = {k: v for k, v in row.items() if k not in RESERVED_FIELDS}
        return cls(
            values=values,
            source_system=row.get("source_system"),
            arrival_ts=row.get("arrival_ts") or None,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "values": {
                    "veteran_id": "VET000123",
                    "first_name": "Maria",
                    "disability_rating": 30
                },
                "source_system": "VBMS",
                "arrival_ts": "2025-01-03T06:00:00Z"
            }
        }
