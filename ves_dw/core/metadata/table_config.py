"""
Table metadata models.

One entry per dimension (SCD Type 2) or accumulating-snapshot fact table.
The loaders are generic; everything table-specific lives here.
"""

import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from ves_dw.core.exceptions import (
    TableKindMismatchError,
    TableNotConfiguredError,
)

IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

# Columns managed by the loaders themselves
DIMENSION_AUDIT_COLUMNS = (
    "content_hash",
    "effective_start",
    "effective_end",
    "is_current",
    "source_system",
    "batch_id",
    "created_at",
    "updated_at",
)
FACT_AUDIT_COLUMNS = (
    "source_system",
    "batch_id",
    "created_at",
    "updated_at",
)


class ColumnType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"


class ColumnPolicy(str, Enum):
    """How an incoming value is merged into an existing snapshot row."""

    PRESERVE_IF_SET = "PRESERVE_IF_SET"
    OVERWRITE = "OVERWRITE"


class DerivedKind(str, Enum):
    DAYS_BETWEEN = "days_between"
    SLA_MET = "sla_met"
    SLA_VARIANCE = "sla_variance"


class ValidationRule(BaseModel):
    """
    A configurable per-column check applied to staged records.

    Attributes:
        rule_name: Human-readable name ("veteran_id_format")
        rule_type: "required_field", "type_check", "range" or "regex"
        field_name: Which column this rule applies to
        parameters: Rule-specific params (e.g., {"min": 0, "max": 100})
        enabled: Whether rule is active
        severity: "error" (reject the row) or "warning" (log only)
    """

    rule_name: str = Field(..., min_length=1)
    rule_type: Literal["required_field", "type_check", "range", "regex"]
    field_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    severity: Literal["error", "warning"] = "error"


class DimensionTableConfig(BaseModel):
    """
    Metadata for a Type 2 slowly changing dimension.

    Attributes:
        table_name: Target table
        surrogate_key: Identity column, unique per version
        business_keys: Columns identifying the entity across versions
        columns: Tracked attributes and their types, in hash order
        validation: Extra per-row rules
        enabled: Disabled tables are skipped by the pipeline
    """

    kind: Literal["dimension"] = "dimension"
    table_name: str
    surrogate_key: str
    business_keys: list[str] = Field(..., min_length=1)
    business_key_types: dict[str, ColumnType] = Field(default_factory=dict)
    columns: dict[str, ColumnType] = Field(..., min_length=1)
    validation: list[ValidationRule] = Field(default_factory=list)
    enabled: bool = True

    @property
    def tracked_columns(self) -> list[str]:
        return list(self.columns)

    def key_type(self, column: str) -> ColumnType:
        return self.business_key_types.get(column, ColumnType.TEXT)

    def column_types(self) -> dict[str, ColumnType]:
        """Business keys followed by tracked columns."""
        types = {k: self.key_type(k) for k in self.business_keys}
        types.update(self.columns)
        return types


class FactColumn(BaseModel):
    type: ColumnType
    policy: ColumnPolicy


class DerivedMetric(BaseModel):
    """
    A metric recomputed from milestone columns on every merge.

    days_between:  end - start in days
    sla_met:       days_between(start, end) <= allowed
    sla_variance:  days_between(start, end) - allowed
    """

    kind: DerivedKind
    start: str
    end: str
    allowed: str | None = None
    open_ended: bool = False


class SnapshotTableConfig(BaseModel):
    """
    Metadata for an accumulating-snapshot fact table.

    Attributes:
        table_name: Target table
        surrogate_key: Identity column
        natural_key: Process identifier, unique per row
        columns: Merged columns with their type and merge policy
        derived: Metrics recomputed from milestone columns
        validation: Extra per-row rules
        enabled: Disabled tables are skipped by the pipeline
    """

    kind: Literal["fact"] = "fact"
    table_name: str
    surrogate_key: str
    natural_key: str
    natural_key_type: ColumnType = ColumnType.TEXT
    columns: dict[str, FactColumn] = Field(..., min_length=1)
    derived: dict[str, DerivedMetric] = Field(default_factory=dict)
    validation: list[ValidationRule] = Field(default_factory=list)
    enabled: bool = True

    @property
    def policies(self) -> dict[str, ColumnPolicy]:
        return {name: col.policy for name, col in self.columns.items()}

    @property
    def business_keys(self) -> list[str]:
        return [self.natural_key]

    def column_types(self) -> dict[str, ColumnType]:
        """Natural key followed by merged columns."""
        types = {self.natural_key: self.natural_key_type}
        types.update({name: col.type for name, col in self.columns.items()})
        return types

    def derived_type(self, name: str) -> ColumnType:
        if self.derived[name].kind == DerivedKind.SLA_MET:
            return ColumnType.BOOLEAN
        return ColumnType.INTEGER


TableConfig = DimensionTableConfig | SnapshotTableConfig


class WarehouseMetadata(BaseModel):
    """All configured tables, keyed by table name."""

    dimensions: dict[str, DimensionTableConfig] = Field(default_factory=dict)
    facts: dict[str, SnapshotTableConfig] = Field(default_factory=dict)

    @property
    def table_names(self) -> list[str]:
        return list(self.dimensions) + list(self.facts)

    def get(self, table_name: str) -> TableConfig:
        if table_name in self.dimensions:
            return self.dimensions[table_name]
        if table_name in self.facts:
            return self.facts[table_name]
        raise TableNotConfiguredError(table_name, self.table_names)

    def get_dimension(self, table_name: str) -> DimensionTableConfig:
        config = self.get(table_name)
        if not isinstance(config, DimensionTableConfig):
            raise TableKindMismatchError(table_name, "dimension", config.kind)
        return config

    def get_fact(self, table_name: str) -> SnapshotTableConfig:
        config = self.get(table_name)
        if not isinstance(config, SnapshotTableConfig):
            raise TableKindMismatchError(table_name, "fact", config.kind)
        return config


def check_metadata(metadata: WarehouseMetadata) -> list[str]:
    """
    Check cross-field constraints pydantic cannot express.

    Returns:
        List of error messages (empty when the metadata is consistent)
    """
    errors: list[str] = []

    duplicate = set(metadata.dimensions) & set(metadata.facts)
    for name in sorted(duplicate):
        errors.append(f"Table '{name}' is declared as both a dimension and a fact")

    for name, dim in metadata.dimensions.items():
        errors.extend(_check_dimension(name, dim))

    for name, fact in metadata.facts.items():
        errors.extend(_check_fact(name, fact))

    return errors


def _check_identifiers(table: str, names: list[str]) -> list[str]:
    return [
        f"{table}: invalid identifier '{n}' (must match {IDENTIFIER_PATTERN.pattern})"
        for n in names
        if not IDENTIFIER_PATTERN.match(n)
    ]


def _check_dimension(name: str, dim: DimensionTableConfig) -> list[str]:
    errors = []
    if dim.table_name != name:
        errors.append(f"{name}: table_name '{dim.table_name}' does not match its key")

    all_columns = [dim.surrogate_key, *dim.business_keys, *dim.columns]
    errors.extend(_check_identifiers(name, [name, *all_columns]))

    for column in all_columns:
        if column in DIMENSION_AUDIT_COLUMNS:
            errors.append(f"{name}: column '{column}' is reserved for load auditing")

    if len(set(all_columns)) != len(all_columns):
        errors.append(f"{name}: surrogate key, business keys and columns must be distinct")

    for key in dim.business_key_types:
        if key not in dim.business_keys:
            errors.append(f"{name}: business_key_types names unknown key '{key}'")

    errors.extend(_check_rules(name, dim.validation, set(dim.column_types())))
    return errors


def _check_fact(name: str, fact: SnapshotTableConfig) -> list[str]:
    errors = []
    if fact.table_name != name:
        errors.append(f"{name}: table_name '{fact.table_name}' does not match its key")

    all_columns = [fact.surrogate_key, fact.natural_key, *fact.columns, *fact.derived]
    errors.extend(_check_identifiers(name, [name, *all_columns]))

    for column in all_columns:
        if column in FACT_AUDIT_COLUMNS:
            errors.append(f"{name}: column '{column}' is reserved for load auditing")

    if len(set(all_columns)) != len(all_columns):
        errors.append(
            f"{name}: surrogate key, natural key, columns and derived metrics must be distinct"
        )

    temporal = (ColumnType.DATE, ColumnType.TIMESTAMP)
    numeric = (ColumnType.INTEGER, ColumnType.BIGINT, ColumnType.NUMERIC)
    for metric_name, metric in fact.derived.items():
        for endpoint in (metric.start, metric.end):
            column = fact.columns.get(endpoint)
            if column is None or column.type not in temporal:
                errors.append(
                    f"{name}.{metric_name}: '{endpoint}' must be a configured date or timestamp column"
                )

        if metric.kind == DerivedKind.DAYS_BETWEEN:
            if metric.allowed is not None:
                errors.append(f"{name}.{metric_name}: 'allowed' only applies to SLA metrics")
        else:
            column = fact.columns.get(metric.allowed) if metric.allowed else None
            if column is None or column.type not in numeric:
                errors.append(
                    f"{name}.{metric_name}: SLA metrics need 'allowed' naming a numeric column"
                )
            if metric.open_ended:
                errors.append(f"{name}.{metric_name}: open_ended only applies to days_between")

    errors.extend(_check_rules(name, fact.validation, set(fact.column_types())))
    return errors


def _check_rules(name: str, rules: list[ValidationRule], columns: set[str]) -> list[str]:
    return [
        f"{name}: rule '{rule.rule_name}' targets unknown column '{rule.field_name}'"
        for rule in rules
        if rule.field_name not in columns
    ]
