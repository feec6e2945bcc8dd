"""
Core data models for the warehouse loaders.

All models use Pydantic for runtime validation and type safety.
"""

from .data_quality_event import DataQualityEvent
from .dimension_version import DimensionVersion
from .execution_log import ExecutionLogEntry
from .load_summary import LoadSummary, Rejection
from .quarantine_record import QuarantineRecord
from .snapshot_row import AccumulatingSnapshotRow
from .source_record import SourceRecord
from .validation_result import ValidationResult

__all__ = [
    "SourceRecord",
    "DimensionVersion",
    "AccumulatingSnapshotRow",
    "LoadSummary",
    "Rejection",
    "QuarantineRecord",
    "DataQualityEvent",
    "ExecutionLogEntry",
    "ValidationResult",
]
