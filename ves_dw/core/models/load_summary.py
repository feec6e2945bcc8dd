"""
LoadSummary model reporting what one batch did to one table.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class Rejection(BaseModel):
    """A staged record that was skipped, and why."""

    record_key: str | None = None
    reason: str
    messages: list[str] = Field(default_factory=list)


class LoadSummary(BaseModel):
    """
    Per-batch outcome, so operators can judge partial success.

    Attributes:
        table_name: Target table
        batch_id: Batch identifier
        inserted: New dimension keys / new snapshot rows
        updated: Dimension versions replaced / snapshot rows with changed values
        unchanged: Records that matched the stored state
        skipped: Records not applied (see skipped_reasons)
        conflicts: PRESERVE_IF_SET conflicts resolved in favour of the stored value
        status: SUCCESS, PARTIAL (some rows skipped), SKIPPED (table disabled)
    """

    table_name: str
    batch_id: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    conflicts: int = 0
    skipped_reasons: dict[str, int] = Field(default_factory=dict)
    rejections: list[Rejection] = Field(default_factory=list)
    status: Literal["SUCCESS", "PARTIAL", "SKIPPED"] = "SUCCESS"
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged + self.skipped

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def record_skip(self, reason: str, record_key: str | None, messages: list[str]) -> None:
        self.skipped += 1
        self.skipped_reasons[reason] = self.skipped_reasons.get(reason, 0) + 1
        self.rejections.append(Rejection(record_key=record_key, reason=reason, messages=messages))

    def finish(self) -> "LoadSummary":
        self.finished_at = datetime.now(timezone.utc)
        if self.status != "SKIPPED":
            self.status = "PARTIAL" if self.skipped else "SUCCESS"
        return self
