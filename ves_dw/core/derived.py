"""
Lag, duration and SLA metrics derived from snapshot milestone dates.
"""

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from ves_dw.core.metadata import DerivedKind, DerivedMetric


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_between(start: date | datetime | None, end: date | datetime | None) -> int | None:
    """
    Whole days from start to end.

    Returns:
        end - start in days, or None if either endpoint is still unset
    """
    start, end = _as_date(start), _as_date(end)
    if start is None or end is None:
        return None
    return (end - start).days


def compute_metric(metric: DerivedMetric, values: Mapping[str, Any], as_of: date) -> int | bool | None:
    """
    Compute one derived metric from the row's current values.

    Args:
        metric: Metric definition
        values: Full row values after merging
        as_of: Load date, used as the end of open_ended durations
    """
    start = values.get(metric.start)
    end = values.get(metric.end)

    if metric.kind == DerivedKind.DAYS_BETWEEN:
        if end is None and metric.open_ended and start is not None:
            end = as_of
        return days_between(start, end)

    elapsed = days_between(start, end)
    allowed = values.get(metric.allowed) if metric.allowed else None
    if elapsed is None or allowed is None:
        return None

    if metric.kind == DerivedKind.SLA_MET:
        return elapsed <= allowed
    return elapsed - int(allowed)


def compute_derived(
    derived: Mapping[str, DerivedMetric],
    values: Mapping[str, Any],
    as_of: date,
) -> dict[str, Any]:
    """Recompute every derived metric of a table."""
    return {name: compute_metric(metric, values, as_of) for name, metric in derived.items()}
