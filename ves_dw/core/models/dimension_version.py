"""
DimensionVersion model representing one historically valid version of a dimension entity.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class DimensionVersion(BaseModel):
    """
    One Type 2 version row.

    Attributes:
        surrogate_key: Identity value, unique per version
        business_key: Key column values, stable across versions
        attributes: Tracked attribute values
        effective_start: When this version became current
        effective_end: When it was superseded (None while current)
        is_current: Exactly one current version per business key
        content_hash: Digest of the tracked attributes
    """

    surrogate_key: int
    business_key: dict[str, Any]
    attributes: dict[str, Any] = Field(default_factory=dict)
    effective_start: datetime
    effective_end: datetime | None = None
    is_current: bool
    content_hash: str = Field(..., min_length=32, max_length=32)
    source_system: str | None = None
    batch_id: str | None = None

    @classmethod
    def from_row(
        cls,
        row: dict[str, Any],
        surrogate_key: str,
        business_keys: list[str],
        tracked_columns: list[str],
    ) -> "DimensionVersion":
        """Build a version from a dict_row fetched from the dimension table."""
        return cls(
            surrogate_key=row[surrogate_key],
            business_key={k: row[k] for k in business_keys},
            attributes={c: row.get(c) for c in tracked_columns},
            effective_start=row["effective_start"],
            effective_end=row["effective_end"],
            is_current=row["is_current"],
            content_hash=row["content_hash"],
            source_system=row.get("source_system"),
            batch_id=row.get("batch_id"),
        )
