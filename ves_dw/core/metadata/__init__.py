"""
Table metadata: column policies, tracked columns and derived metrics.
"""

from .config_loader import MetadataBuilder, MetadataLoader, load_metadata, parse_metadata
from .table_config import (
    ColumnPolicy,
    ColumnType,
    DerivedKind,
    DerivedMetric,
    DimensionTableConfig,
    FactColumn,
    SnapshotTableConfig,
    TableConfig,
    ValidationRule,
    WarehouseMetadata,
)

__all__ = [
    "ColumnPolicy",
    "ColumnType",
    "DerivedKind",
    "DerivedMetric",
    "DimensionTableConfig",
    "FactColumn",
    "SnapshotTableConfig",
    "TableConfig",
    "ValidationRule",
    "WarehouseMetadata",
    "MetadataBuilder",
    "MetadataLoader",
    "load_metadata",
    "parse_metadata",
]
