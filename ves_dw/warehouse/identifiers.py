"""
SQL identifier composition from the validated metadata allow-list.

Table and column names only ever reach SQL through psycopg.sql.Identifier,
and only after matching IDENTIFIER_PATTERN. Values always go through
query parameters.
"""

from collections.abc import Iterable

from psycopg import sql

from ves_dw.core.metadata.table_config import IDENTIFIER_PATTERN


def check_identifier(name: str) -> str:
    """
    Raises:
        ValueError: If name is not a plain lowercase SQL identifier
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def qualified_table(schema_name: str, table_name: str) -> sql.Identifier:
    return sql.Identifier(check_identifier(schema_name), check_identifier(table_name))


def column(name: str) -> sql.Identifier:
    return sql.Identifier(check_identifier(name))


def column_list(names: Iterable[str]) -> sql.Composed:
    return sql.SQL(", ").join(column(n) for n in names)


def placeholders(names: Iterable[str]) -> sql.Composed:
    """Named placeholders (%(name)s) for the given columns."""
    return sql.SQL(", ").join(sql.Placeholder(check_identifier(n)) for n in names)


def key_predicate(names: Iterable[str], alias: str | None = None) -> sql.Composed:
    """`a = %(a)s AND b = %(b)s` over the key columns."""
    parts = []
    for name in names:
        ident = (
            sql.Identifier(check_identifier(alias), check_identifier(name))
            if alias
            else column(name)
        )
        parts.append(sql.SQL("{} = {}").format(ident, sql.Placeholder(name)))
    return sql.SQL(" AND ").join(parts)


def lock_key(*parts: object) -> str:
    """Text fed to hashtextextended() for per-key advisory locks."""
    return "\x1f".join("" if p is None else str(p) for p in parts)
