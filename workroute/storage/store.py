"""Filtered CRUD over the workroute tables.

`TableStore` is the only thing the router, status pipeline and merger talk to.
It speaks in table names, column names and predicates and hands back plain
dicts, so callers stay independent of the concrete tables' shapes.
"""

from __future__ import annotations

import re
import sqlite3
import uuid
from datetime import datetime

from workroute.errors import StoreError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


def _columns(columns: str | list[str]) -> str:
    if columns == "*":
        return "*"
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]
    return ", ".join(_ident(c) for c in columns)


def like_escape(value: str) -> str:
    """Escape LIKE wildcards so `value` matches literally inside an `ilike` pattern."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TableStore:
    """Data access layer for the workroute SQLite database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def select(
        self,
        table: str,
        columns: str | list[str] = "*",
        *,
        eq: dict | None = None,
        is_null: list[str] | None = None,
        in_: dict[str, list] | None = None,
        ilike: dict[str, str] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows matching every given predicate. Returns dicts."""
        query = f"SELECT {_columns(columns)} FROM {_ident(table)} WHERE 1=1"
        params: list = []

        for column, value in (eq or {}).items():
            query += f" AND {_ident(column)} = ?"
            params.append(value)
        for column in is_null or []:
            query += f" AND {_ident(column)} IS NULL"
        for column, values in (in_ or {}).items():
            if not values:
                return []
            placeholders = ", ".join("?" for _ in values)
            query += f" AND {_ident(column)} IN ({placeholders})"
            params.extend(values)
        for column, pattern in (ilike or {}).items():
            query += f" AND LOWER({_ident(column)}) LIKE LOWER(?) ESCAPE '\\'"
            params.append(pattern)

        if order_by:
            direction = "ASC" if ascending else "DESC"
            query += f" ORDER BY {_ident(order_by)} {direction}, rowid {direction}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        try:
            rows = self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"select from {table} failed: {e}") from e
        return [dict(row) for row in rows]

    def get(self, table: str, item_id: str, columns: str | list[str] = "*") -> dict | None:
        rows = self.select(table, columns, eq={"id": item_id}, limit=1)
        return rows[0] if rows else None

    def update(self, table: str, patch: dict, *, eq: dict) -> int:
        """Apply `patch` to rows matching `eq`. Returns the number of rows touched."""
        if not patch:
            return 0
        if not eq:
            raise StoreError("update requires at least one predicate")

        assignments = ", ".join(f"{_ident(c)} = ?" for c in patch)
        where = " AND ".join(f"{_ident(c)} = ?" for c in eq)
        params = list(patch.values()) + list(eq.values())

        try:
            cursor = self._conn.execute(
                f"UPDATE {_ident(table)} SET {assignments} WHERE {where}", params
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"update of {table} failed: {e}") from e
        return cursor.rowcount

    def insert(self, table: str, record: dict) -> dict:
        """Insert a record and return the created row."""
        row = dict(record)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now().isoformat())

        names = ", ".join(_ident(c) for c in row)
        placeholders = ", ".join("?" for _ in row)
        try:
            self._conn.execute(
                f"INSERT INTO {_ident(table)} ({names}) VALUES ({placeholders})",
                list(row.values()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"insert into {table} failed: {e}") from e

        return self.get(table, row["id"]) or row
