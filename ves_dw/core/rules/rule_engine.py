"""
Rule engine for validating staged records against a table's metadata.

Every table gets the same baseline: its key columns are required and each
configured column is coerced to its declared type. Rules from the table's
`validation` section run on the coerced values.
"""

from typing import Any

from ves_dw.core.metadata import TableConfig
from ves_dw.core.models import ValidationResult
from ves_dw.core.validators import (
    BaseValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
    ValidationError,
)


class RuleEngine:
    """
    Applies key, type and configured rules to staged records of one table.
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "type_check": TypeValidator,
        "range": RangeValidator,
        "regex": RegexValidator,
    }

    def __init__(self, table_config: TableConfig):
        """
        Initialize the rule engine for a table.

        Args:
            table_config: Dimension or snapshot table metadata
        """
        self.table_config = table_config
        self.key_columns = list(table_config.business_keys)
        self.coercers: dict[str, TypeValidator] = {
            column: TypeValidator(column, {"expected_type": column_type.value})
            for column, column_type in table_config.column_types().items()
        }
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Build validator instances from the table's rule configuration."""
        for key in self.key_columns:
            self.validators.append((f"{key}_required", "error", RequiredFieldValidator(key)))

        for rule in self.table_config.validation:
            if not rule.enabled:
                continue

            validator_class = self.VALIDATOR_REGISTRY.get(rule.rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule.rule_type}")

            try:
                validator = validator_class(rule.field_name, rule.parameters)
            except ValueError as e:
                raise ValueError(f"Failed to create validator for rule '{rule.rule_name}': {e}") from e
            self.validators.append((rule.rule_name, rule.severity, validator))

    def validate_record(self, record: dict[str, Any]) -> ValidationResult:
        """
        Coerce and validate one staged record.

        Args:
            record: Staged values keyed by column name

        Returns:
            ValidationResult; on success `payload` holds the coerced values of
            every configured column present in the record
        """
        failed_rules: list[str] = []
        messages: list[str] = []
        warnings: list[str] = []
        payload: dict[str, Any] = {}
        uncoercible: set[str] = set()

        for column, coercer in self.coercers.items():
            if column not in record:
                continue
            try:
                payload[column] = coercer.coerce(record[column])
            except ValidationError as e:
                failed_rules.append(f"{column}_type_check")
                messages.append(str(e))
                uncoercible.add(column)

        for rule_name, severity, validator in self.validators:
            # A column that failed coercion is reported once
            if validator.field_name in uncoercible:
                continue
            value = payload.get(validator.field_name, record.get(validator.field_name))
            try:
                validator.validate(value, {**record, **payload})
            except ValidationError as e:
                if severity == "error":
                    failed_rules.append(rule_name)
                    messages.append(str(e))
                else:
                    warnings.append(rule_name)

        return ValidationResult(
            record_key=self.record_key(record),
            passed=not failed_rules,
            failed_rules=failed_rules,
            error_messages=messages,
            warnings=warnings,
            payload=payload if not failed_rules else {},
        )

    def record_key(self, record: dict[str, Any]) -> str | None:
        """Render the record's key columns for logs and quarantine rows."""
        parts = [record.get(k) for k in self.key_columns]
        if all(p is None for p in parts):
            return None
        return "|".join("" if p is None else str(p) for p in parts)

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        counts: dict[str, int] = {}
        for _, _, validator in self.validators:
            counts[validator.rule_type] = counts.get(validator.rule_type, 0) + 1
        return {
            "table_name": self.table_config.table_name,
            "typed_columns": len(self.coercers),
            "total_rules": len(self.validators),
            "rules_by_type": counts,
        }
