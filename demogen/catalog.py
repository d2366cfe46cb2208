"""DuckDB catalog helpers.

These helpers centralize querying DuckDB's catalog (duckdb_tables,
duckdb_columns) and safely counting rows, for the CLI's table listing.
"""

from __future__ import annotations

from typing import Iterable

import duckdb


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def _excluded(name: str, exclude_prefixes: Iterable[str]) -> bool:
    for p in exclude_prefixes:
        if p and name.startswith(p):
            return True
    return False


def list_tables(
    conn: duckdb.DuckDBPyConnection,
    *,
    exclude_prefixes: Iterable[str] = (),
) -> list[str]:
    """Return user table names from the catalog, minus any excluded prefixes."""
    rows = conn.execute(
        "SELECT table_name FROM duckdb_tables() WHERE internal = false ORDER BY table_name"
    ).fetchall()
    names = [r[0] for r in rows]
    if exclude_prefixes:
        names = [n for n in names if not _excluded(n, exclude_prefixes)]
    return names


def has_column(conn: duckdb.DuckDBPyConnection, relation_name: str, column: str) -> bool:
    row = conn.execute(
        "SELECT COUNT(*) FROM duckdb_columns() WHERE table_name = ? AND column_name = ?",
        [relation_name, column],
    ).fetchone()
    return bool(row and row[0])


def count_rows(
    conn: duckdb.DuckDBPyConnection,
    relation_name: str,
    *,
    where: str = "",
    params: list[object] | None = None,
) -> int | None:
    """Return COUNT(*) for a table, optionally filtered, or None on error."""
    sql = f"SELECT COUNT(*) FROM {quote_ident(relation_name)}"
    if where:
        sql += f" WHERE {where}"
    try:
        row = conn.execute(sql, params or []).fetchone()
    except duckdb.Error:
        return None
    if not row:
        return 0
    return int(row[0])


def count_rows_display(
    conn: duckdb.DuckDBPyConnection,
    relation_name: str,
    *,
    where: str = "",
    params: list[object] | None = None,
) -> str:
    """Return a display-friendly row count (or 'error')."""
    n = count_rows(conn, relation_name, where=where, params=params)
    return str(n) if n is not None else "error"
