"""
Content hashing for change detection.

The digest is an MD5 over a canonical, delimiter-escaped rendering of an
ordered sequence of values. It is a cheap "did anything change" check used
before writing a new dimension version; it is not a security boundary, and
MD5 collision resistance is ample for detecting real attribute changes at
warehouse table sizes.
"""

import hashlib
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

DELIMITER = "|"
NULL_SENTINEL = "\\N"


def canonical_value(value: Any) -> str:
    """
    Render a scalar in a stable, locale-independent form.

    Args:
        value: Scalar value (None, bool, int, float, Decimal, date, datetime, str, ...)

    Returns:
        Canonical string; None maps to the null sentinel
    """
    if value is None:
        return NULL_SENTINEL

    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, int):
        text = str(value)
    elif isinstance(value, (float, Decimal)):
        text = _canonical_number(value)
    elif isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        text = value.isoformat()
    elif isinstance(value, (date, time)):
        text = value.isoformat()
    else:
        text = str(value)

    return _escape(text)


def _canonical_number(value: float | Decimal) -> str:
    # Floats go through their shortest repr so 0.1 and Decimal("0.1") agree
    number = Decimal(repr(value)) if isinstance(value, float) else value
    if number.is_nan():
        return "NaN"
    if number.is_infinite():
        return "-Infinity" if number.is_signed() else "Infinity"
    if number.is_zero():
        return "0"
    # Exact digits: normalize() would round to the context precision
    text = format(number, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace(DELIMITER, "\\" + DELIMITER)


def compute_content_hash(values: Sequence[Any]) -> str:
    """
    Compute the content hash of an ordered sequence of values.

    Args:
        values: Column values in tracked-column order

    Returns:
        32-character lowercase hexadecimal MD5 digest
    """
    payload = DELIMITER.join(canonical_value(v) for v in values)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def hash_record(record: Mapping[str, Any], columns: Sequence[str]) -> str:
    """
    Hash the named columns of a record, in the given order.

    Missing columns hash the same as explicit nulls.
    """
    return compute_content_hash([record.get(c) for c in columns])
