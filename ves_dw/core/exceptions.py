"""
Exception types for the warehouse ETL.

Per-row problems (RecordRejectedError) are recovered by the loaders: the
row is quarantined and the batch continues. Metadata problems are fatal for
the table being processed and propagate to the caller.
"""


class WarehouseEtlError(Exception):
    """Base exception for all warehouse ETL errors."""
    pass


# =============================================================================
# Metadata Errors
# =============================================================================

class MetadataError(WarehouseEtlError):
    """Base exception for table metadata errors."""
    pass


class MetadataFileNotFoundError(MetadataError):
    """Raised when the table metadata YAML file cannot be found."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        super().__init__(
            f"Table metadata file not found: '{file_path}'. "
            f"Set VES_TABLES_CONFIG or pass the path explicitly."
        )


class MetadataValidationError(MetadataError):
    """Raised when table metadata fails validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = (
            f"Table metadata validation failed with {len(errors)} error(s):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
        super().__init__(message)


class TableNotConfiguredError(MetadataError):
    """Raised when a table has no metadata entry."""

    def __init__(self, table_name: str, available_tables: list[str]):
        self.table_name = table_name
        self.available_tables = available_tables
        super().__init__(
            f"Table '{table_name}' is not configured. "
            f"Available tables: {sorted(available_tables)}"
        )


class TableKindMismatchError(MetadataError):
    """Raised when a dimension is used as a fact table or vice versa."""

    def __init__(self, table_name: str, expected_kind: str, actual_kind: str):
        self.table_name = table_name
        self.expected_kind = expected_kind
        self.actual_kind = actual_kind
        super().__init__(
            f"Table '{table_name}' is configured as a {actual_kind}, "
            f"not a {expected_kind}"
        )


# =============================================================================
# Row Errors
# =============================================================================

class RecordRejectedError(WarehouseEtlError):
    """Raised when a single staged record cannot be loaded."""

    def __init__(
        self,
        reason: str,
        messages: list[str],
        failed_rules: list[str] | None = None,
        record_key: str | None = None,
    ):
        self.reason = reason
        self.messages = messages
        self.failed_rules = failed_rules or [reason]
        self.record_key = record_key
        super().__init__(f"Record {record_key!r} rejected ({reason}): {'; '.join(messages)}")


# =============================================================================
# Integrity Errors
# =============================================================================

class IntegrityViolationError(WarehouseEtlError):
    """Raised when a reconciliation pass finds broken version history."""

    def __init__(self, table_name: str, violations: list[dict]):
        self.table_name = table_name
        self.violations = violations
        super().__init__(
            f"Table '{table_name}' has {len(violations)} integrity violation(s)"
        )
