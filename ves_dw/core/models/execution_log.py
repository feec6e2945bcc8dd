"""
ExecutionLogEntry model representing one table load in the execution history.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class ExecutionLogEntry(BaseModel):
    """
    Execution history row for one (table, batch) run.

    Attributes:
        execution_id: Auto-increment primary key
        pipeline_name: "scd2:<table>" or "snapshot:<table>"
        table_name: Target table
        batch_id: Batch identifier
        status: RUNNING, SUCCESS, PARTIAL, FAILED or SKIPPED
        rows_read / rows_inserted / rows_updated / rows_unchanged / rows_rejected: Counts
        error_message: Batch-level error, if any
    """

    execution_id: int | None = None
    pipeline_name: str
    table_name: str
    batch_id: str
    status: Literal["RUNNING", "SUCCESS", "PARTIAL", "FAILED", "SKIPPED"] = "RUNNING"
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    duration_seconds: float | None = None
    rows_read: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_unchanged: int = 0
    rows_rejected: int = 0
    error_message: str | None = None
