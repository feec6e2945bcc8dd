"""
Table metadata loading.

Reads dimension and fact table metadata from YAML, validates it once at
startup, and provides a builder for assembling metadata in code.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from ves_dw.core.exceptions import MetadataFileNotFoundError, MetadataValidationError

from .table_config import (
    ColumnPolicy,
    ColumnType,
    DerivedKind,
    DerivedMetric,
    DimensionTableConfig,
    FactColumn,
    SnapshotTableConfig,
    ValidationRule,
    WarehouseMetadata,
    check_metadata,
)

DEFAULT_CONFIG_PATH = "config/tables.yaml"


class MetadataLoader:
    """
    Loads table metadata from a YAML configuration file.

    Expected YAML format:
    ```yaml
    dimensions:
      dim_veterans:
        surrogate_key: veteran_sk
        business_keys: [veteran_id]
        columns:
          first_name: text
          disability_rating: integer
        validation:
          veteran_id:
            - type: regex
              params:
                pattern: "^VET[0-9]{6}$"

    facts:
      fact_exam_requests:
        surrogate_key: exam_request_sk
        natural_key: exam_request_id
        columns:
          request_received_date: {type: date, policy: PRESERVE_IF_SET}
          request_status: {type: text, policy: OVERWRITE}
        derived:
          days_to_assignment:
            kind: days_between
            start: request_received_date
            end: examiner_assigned_date
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the metadata loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            MetadataFileNotFoundError: If the file does not exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise MetadataFileNotFoundError(str(config_path))

    def load(self) -> WarehouseMetadata:
        """
        Load, parse and validate the metadata file.

        Returns:
            Validated WarehouseMetadata

        Raises:
            MetadataValidationError: If the YAML is malformed or inconsistent
        """
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise MetadataValidationError([f"Invalid YAML in {self.config_path}: {e}"]) from e

        return parse_metadata(config)


def parse_metadata(config: dict[str, Any] | None) -> WarehouseMetadata:
    """
    Build WarehouseMetadata from an already-parsed configuration mapping.

    Raises:
        MetadataValidationError: If any table entry is invalid
    """
    if not config or not ("dimensions" in config or "facts" in config):
        raise MetadataValidationError(
            ["Configuration must contain a 'dimensions' or 'facts' section"]
        )

    errors: list[str] = []
    dimensions: dict[str, DimensionTableConfig] = {}
    facts: dict[str, SnapshotTableConfig] = {}

    for table_name, entry in (config.get("dimensions") or {}).items():
        try:
            dimensions[table_name] = _parse_dimension(table_name, entry)
        except (PydanticValidationError, ValueError, TypeError) as e:
            errors.append(f"dimension '{table_name}': {e}")

    for table_name, entry in (config.get("facts") or {}).items():
        try:
            facts[table_name] = _parse_fact(table_name, entry)
        except (PydanticValidationError, ValueError, TypeError) as e:
            errors.append(f"fact '{table_name}': {e}")

    if errors:
        raise MetadataValidationError(errors)

    metadata = WarehouseMetadata(dimensions=dimensions, facts=facts)
    errors = check_metadata(metadata)
    if errors:
        raise MetadataValidationError(errors)

    return metadata


def load_metadata(config_path: str | Path | None = None) -> WarehouseMetadata:
    """
    Load table metadata from a path, VES_TABLES_CONFIG, or the default location.
    """
    path = config_path or os.getenv("VES_TABLES_CONFIG", DEFAULT_CONFIG_PATH)
    return MetadataLoader(path).load()


def _parse_dimension(table_name: str, entry: dict[str, Any]) -> DimensionTableConfig:
    if not isinstance(entry, dict):
        raise ValueError("table entry must be a mapping")

    business_keys = entry.get("business_keys")
    if isinstance(business_keys, str):
        business_keys = [business_keys]

    return DimensionTableConfig(
        table_name=table_name,
        surrogate_key=entry.get("surrogate_key", f"{table_name}_sk"),
        business_keys=business_keys or [],
        business_key_types=entry.get("business_key_types", {}),
        columns=entry.get("columns", {}),
        validation=_parse_rules(entry.get("validation")),
        enabled=entry.get("enabled", True),
    )


def _parse_fact(table_name: str, entry: dict[str, Any]) -> SnapshotTableConfig:
    if not isinstance(entry, dict):
        raise ValueError("table entry must be a mapping")

    return SnapshotTableConfig(
        table_name=table_name,
        surrogate_key=entry.get("surrogate_key", f"{table_name}_sk"),
        natural_key=entry.get("natural_key", ""),
        natural_key_type=entry.get("natural_key_type", "text"),
        columns=entry.get("columns", {}),
        derived=entry.get("derived") or {},
        validation=_parse_rules(entry.get("validation")),
        enabled=entry.get("enabled", True),
    )


def _parse_rules(section: dict[str, Any] | None) -> list[ValidationRule]:
    rules = []
    for field_name, field_rule_list in (section or {}).items():
        if not isinstance(field_rule_list, list):
            raise ValueError(f"Rules for field '{field_name}' must be a list")

        for idx, rule_def in enumerate(field_rule_list):
            rules.append(_parse_rule(field_name, rule_def, idx))
    return rules


def _parse_rule(field_name: str, rule_def: dict[str, Any], idx: int) -> ValidationRule:
    """
    Parse a single rule definition.

    Args:
        field_name: The column this rule applies to
        rule_def: The rule definition from YAML
        idx: Index of this rule for the column (for naming)

    Raises:
        ValueError: If rule definition is invalid
    """
    if "type" not in rule_def:
        raise ValueError(f"Rule for field '{field_name}' is missing 'type'")

    rule_type = rule_def["type"]

    return ValidationRule(
        rule_name=rule_def.get("name", f"{field_name}_{rule_type}_{idx}"),
        rule_type=rule_type,
        field_name=field_name,
        parameters=rule_def.get("params", rule_def.get("parameters", {})) or {},
        severity=rule_def.get("severity", "error"),
        enabled=rule_def.get("enabled", True),
    )


class MetadataBuilder:
    """
    Programmatically build table metadata (for testing or embedding).

    Usage:
        metadata = (
            MetadataBuilder()
            .add_dimension("dim_veterans", ["veteran_id"], {"disability_rating": "integer"})
            .add_fact("fact_exam_requests", "exam_request_id", {...})
            .build()
        )
    """

    def __init__(self):
        """Initialize empty metadata."""
        self.dimensions: dict[str, DimensionTableConfig] = {}
        self.facts: dict[str, SnapshotTableConfig] = {}

    def add_dimension(
        self,
        table_name: str,
        business_keys: list[str],
        columns: dict[str, str | ColumnType],
        surrogate_key: str | None = None,
        validation: list[ValidationRule] | None = None,
        enabled: bool = True,
    ) -> "MetadataBuilder":
        """Add a Type 2 dimension."""
        self.dimensions[table_name] = DimensionTableConfig(
            table_name=table_name,
            surrogate_key=surrogate_key or f"{table_name}_sk",
            business_keys=business_keys,
            columns={name: ColumnType(t) for name, t in columns.items()},
            validation=validation or [],
            enabled=enabled,
        )
        return self

    def add_fact(
        self,
        table_name: str,
        natural_key: str,
        columns: dict[str, tuple[str | ColumnType, str | ColumnPolicy]],
        derived: dict[str, dict[str, Any]] | None = None,
        surrogate_key: str | None = None,
        validation: list[ValidationRule] | None = None,
        enabled: bool = True,
    ) -> "MetadataBuilder":
        """Add an accumulating-snapshot fact; columns map name -> (type, policy)."""
        self.facts[table_name] = SnapshotTableConfig(
            table_name=table_name,
            surrogate_key=surrogate_key or f"{table_name}_sk",
            natural_key=natural_key,
            columns={
                name: FactColumn(type=ColumnType(t), policy=ColumnPolicy(p))
                for name, (t, p) in columns.items()
            },
            derived={
                name: DerivedMetric(**{**definition, "kind": DerivedKind(definition["kind"])})
                for name, definition in (derived or {}).items()
            },
            validation=validation or [],
            enabled=enabled,
        )
        return self

    def build(self) -> WarehouseMetadata:
        """
        Build and validate the metadata.

        Raises:
            MetadataValidationError: If the assembled metadata is inconsistent
        """
        metadata = WarehouseMetadata(dimensions=self.dimensions, facts=self.facts)
        errors = check_metadata(metadata)
        if errors:
            raise MetadataValidationError(errors)
        return metadata
