"""
Structured JSON logging for the warehouse ETL

Every module logs through get_logger(__name__); loaders attach table,
batch and key context with `extra=` so rejected rows and policy conflicts
can be found and reprocessed from the log stream.
"""
import logging
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

DEFAULT_LOGGER_NAME = "ves-dw-etl"
SERVICE_NAME = "ves-warehouse-etl"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(module)s:%(lineno)d] %(message)s"


class WarehouseJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per line: UTC timestamp, level, logger, source location,
    service name, the message and any `extra=` context.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault(
            "timestamp",
            datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
        )
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["location"] = f"{record.module}:{record.funcName}:{record.lineno}"
        log_record["service"] = SERVICE_NAME


def _resolve_level(level: str | None) -> int:
    value = logging.getLevelName((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Configure a logger writing to stdout.

    Args:
        name: Logger name
        level: Log level (defaults to env var LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT, then json)

    Returns:
        Configured logger instance
    """
    log_level = _resolve_level(level)
    format_type = (format_type or os.getenv("LOG_FORMAT", "json")).lower()

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if format_type == "json":
        handler.setFormatter(WarehouseJsonFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Logger for `name`, configured from the environment on first use."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logger(name)
    return logger


@contextmanager
def log_operation(operation_name: str, logger: logging.Logger | None = None, **extra_fields):
    """
    Log the start, end and duration of a block.

    Usage:
        with log_operation("SCD2 load dim_veterans", logger=logger, batch_id="b-001"):
            ...

    A failure is logged with its type and message and re-raised.
    """
    logger = logger or get_logger()
    context = {"operation": operation_name, **extra_fields}
    started = time.perf_counter()

    logger.info(f"Starting: {operation_name}", extra=context)
    try:
        yield
    except Exception as e:
        logger.error(
            f"Failed: {operation_name}",
            extra={
                **context,
                "duration_seconds": round(time.perf_counter() - started, 3),
                "status": "error",
                "error_type": type(e).__name__,
                "error_message": str(e),
            },
            exc_info=True,
        )
        raise

    logger.info(
        f"Completed: {operation_name}",
        extra={
            **context,
            "duration_seconds": round(time.perf_counter() - started, 3),
            "status": "success",
        },
    )
