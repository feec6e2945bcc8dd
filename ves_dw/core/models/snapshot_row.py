"""
AccumulatingSnapshotRow model representing one instance of a multi-stage business process.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AccumulatingSnapshotRow(BaseModel):
    """
    One process instance (e.g. one exam request), updated in place.

    Attributes:
        surrogate_key: Identity value
        natural_key: Process identifier
        values: Milestone, current-state and derived metric columns
        created_at: Set once when the row is born
        updated_at: Refreshed on every merge that touches the row
    """

    surrogate_key: int
    natural_key: Any
    values: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    source_system: str | None = None
    batch_id: str | None = None

    @classmethod
    def from_row(
        cls,
        row: dict[str, Any],
        surrogate_key: str,
        natural_key: str,
        columns: list[str],
    ) -> "AccumulatingSnapshotRow":
        """Build a snapshot row from a dict_row fetched from the fact table."""
        return cls(
            surrogate_key=row[surrogate_key],
            natural_key=row[natural_key],
            values={c: row.get(c) for c in columns},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            source_system=row.get("source_system"),
            batch_id=row.get("batch_id"),
        )
