"""wh40k_etl.queries

Read-only lookups backing the HTTP API.
"""

from __future__ import annotations

from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from wh40k_etl.shared import ConfigurationError
from wh40k_etl.tables import ID_KEYED_TABLES


def list_factions(conn: psycopg.Connection) -> list[dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        return cur.execute("SELECT id, name, link FROM factions ORDER BY name").fetchall()


def get_row(conn: psycopg.Connection, table: str, row_id: Any) -> dict[str, Any] | None:
    """Fetch one row by its "id" from any table keyed that way."""
    if table not in ID_KEYED_TABLES:
        raise ConfigurationError(f"table {table!r} cannot be queried by id")
    with conn.cursor(row_factory=dict_row) as cur:
        return cur.execute(
            sql.SQL("SELECT * FROM {table} WHERE id = %s").format(table=sql.Identifier(table)),
            (row_id,),
        ).fetchone()

