"""
Merge decisions for dimension versions and snapshot rows.

These functions hold no state and touch no database. The warehouse loaders
wrap each decision in a per-key transaction.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from ves_dw.core.metadata import ColumnPolicy

T = TypeVar("T")


class ScdAction(str, Enum):
    INSERT = "insert"
    EXPIRE_AND_INSERT = "expire_and_insert"
    UNCHANGED = "unchanged"


def plan_scd_action(current_hash: str | None, incoming_hash: str, has_current: bool) -> ScdAction:
    """
    Decide what a Type 2 load does for one business key.

    Args:
        current_hash: content_hash of the current version (None if no current version)
        incoming_hash: content_hash of the staged record
        has_current: Whether a current version exists

    Returns:
        INSERT for a new key, EXPIRE_AND_INSERT when the hash differs,
        UNCHANGED when it matches
    """
    if not has_current:
        return ScdAction.INSERT
    if current_hash != incoming_hash:
        return ScdAction.EXPIRE_AND_INSERT
    return ScdAction.UNCHANGED


@dataclass
class PolicyConflict:
    """An incoming milestone that disagrees with an already-set stored value."""

    column: str
    stored_value: Any
    incoming_value: Any


@dataclass
class SnapshotMergeResult:
    """Outcome of merging one staged record into a snapshot row."""

    values: dict[str, Any]
    changed_columns: list[str] = field(default_factory=list)
    conflicts: list[PolicyConflict] = field(default_factory=list)
    is_new: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.changed_columns)


def merge_snapshot_values(
    stored: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    policies: Mapping[str, ColumnPolicy],
) -> SnapshotMergeResult:
    """
    Merge an incoming record into a stored snapshot row by column policy.

    PRESERVE_IF_SET keeps a non-null stored value; the incoming value is taken
    only while the stored one is null. OVERWRITE always takes the incoming
    value. Columns missing from the incoming record keep their stored value
    under either policy.

    Args:
        stored: Current row values, or None if the row does not exist yet
        incoming: Staged values keyed by column (only policy columns are read)
        policies: Merge policy per column

    Returns:
        SnapshotMergeResult with the merged values for every policy column
    """
    if stored is None:
        values = {column: incoming.get(column) for column in policies}
        changed = [c for c in policies if values[c] is not None]
        return SnapshotMergeResult(values=values, changed_columns=changed, is_new=True)

    values: dict[str, Any] = {}
    changed: list[str] = []
    conflicts: list[PolicyConflict] = []

    for column, policy in policies.items():
        current = stored.get(column)

        if column not in incoming:
            values[column] = current
            continue

        new = incoming[column]

        if policy == ColumnPolicy.OVERWRITE:
            values[column] = new
        elif current is None:
            values[column] = new
        else:
            values[column] = current
            if new is not None and new != current:
                conflicts.append(PolicyConflict(column, current, new))

        if values[column] != current:
            changed.append(column)

    return SnapshotMergeResult(values=values, changed_columns=changed, conflicts=conflicts)


def latest_per_key(
    records: Iterable[T],
    key: Callable[[T], Any],
    order: Callable[[T], Any],
) -> tuple[list[T], list[T]]:
    """
    Keep the latest record per key.

    Ties on the ordering value go to the record appearing last in the input.

    Returns:
        (winners in input order, superseded records)
    """
    winners: dict[Any, tuple[int, T]] = {}
    superseded: list[T] = []

    for position, record in enumerate(records):
        k = key(record)
        previous = winners.get(k)
        if previous is None:
            winners[k] = (position, record)
            continue
        if order(record) >= order(previous[1]):
            superseded.append(previous[1])
            winners[k] = (position, record)
        else:
            superseded.append(record)

    ordered = sorted(winners.values(), key=lambda pair: pair[0])
    return [record for _, record in ordered], superseded
