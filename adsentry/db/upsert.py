"""Idempotent ``INSERT ... ON CONFLICT DO UPDATE`` for PostgreSQL and SQLite."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection


def upsert(
    conn: Connection,
    table: Table,
    rows: Sequence[Mapping[str, Any]],
    *,
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
) -> int:
    """Insert ``rows``; rows that collide on ``conflict_columns`` are overwritten."""
    if not rows:
        return 0
    if conn.dialect.name == "postgresql":
        stmt = postgresql.insert(table)
    elif conn.dialect.name == "sqlite":
        stmt = sqlite.insert(table)
    else:  # pragma: no cover - unsupported backend
        raise NotImplementedError(f"Upsert not supported for {conn.dialect.name}")
    columns = update_columns or [c for c in rows[0] if c not in conflict_columns]
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={c: stmt.excluded[c] for c in columns},
    )
    conn.execute(stmt, [dict(row) for row in rows])
    return len(rows)
