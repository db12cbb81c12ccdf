"""wh40k_etl.table_loader

Load one table from its parsed CSV rows.

Per table:
  1. Rename CSV headers where the column name differs.
  2. Pre-fetch the key set of every parent table named in the static
     foreign-key map (one query per parent, not per row).
  3. For each row: convert every declared column, drop it if a required
     column is null or a non-null foreign key is missing from its parent's
     key set, otherwise queue it.
  4. For detachment-scoped tables, resolve the row's own
     (faction_id, detachment) pair to a surrogate detachment_id.
  5. Insert-or-replace the queued rows in a single transaction.

Skipped rows are reported, never fatal.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import psycopg
from psycopg import sql

from wh40k_etl.csv_loader import read_csv_file
from wh40k_etl.shared import RejectWriter, TableLoadResult
from wh40k_etl.tables import (
    DETACHMENT_FACTION_COL,
    DETACHMENT_NAME_COL,
    TableSpec,
    get_table_spec,
)

log = logging.getLogger(__name__)

DetachmentLookup = dict[tuple[str, str], int]

# Parent tables are always keyed by "id".
PARENT_KEY = "id"


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def rename_headers(row: dict[str, Any], header_map: dict[str, str]) -> dict[str, Any]:
    if not header_map:
        return row
    return {header_map.get(k, k): v for k, v in row.items()}


def convert_row(spec: TableSpec, row: dict[str, Any]) -> dict[str, Any]:
    return {col.name: col.convert(row.get(col.name)) for col in spec.columns}


def check_row(
    spec: TableSpec,
    converted: dict[str, Any],
    fk_sets: dict[str, set[Any]],
) -> str | None:
    """Return the skip reason for a converted row, or None if it is loadable."""
    for col in spec.columns:
        if not col.nullable and converted[col.name] is None:
            return f"missing_required:{col.name}"
    for fk_col, valid_ids in fk_sets.items():
        value = converted.get(fk_col)
        if value is not None and value not in valid_ids:
            return f"fk_not_found:{fk_col}={value!r}"
    return None


def resolve_detachment(row: dict[str, Any], lookup: DetachmentLookup) -> int | None:
    faction = row.get(DETACHMENT_FACTION_COL)
    name = row.get(DETACHMENT_NAME_COL)
    if not faction or not name:
        return None
    return lookup.get((faction, name))


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------

def fetch_key_set(conn: psycopg.Connection, table: str, key: str = PARENT_KEY) -> set[Any]:
    rows = conn.execute(
        sql.SQL("SELECT {key} FROM {table}").format(
            key=sql.Identifier(key), table=sql.Identifier(table)
        )
    ).fetchall()
    return {r[0] for r in rows}


def prefetch_foreign_keys(conn: psycopg.Connection, spec: TableSpec) -> dict[str, set[Any]]:
    fk_sets: dict[str, set[Any]] = {}
    cache: dict[str, set[Any]] = {}
    for fk_col, parent in spec.foreign_keys.items():
        if parent not in cache:
            cache[parent] = fetch_key_set(conn, parent)
            log.info(
                "Pre-fetched %d valid ids from %s for %s", len(cache[parent]), parent, spec.name
            )
        fk_sets[fk_col] = cache[parent]
    return fk_sets


def build_upsert(spec: TableSpec) -> sql.Composed:
    """INSERT ... ON CONFLICT (<key>) DO UPDATE for every non-key column."""
    columns = spec.insert_columns
    updates = [c for c in columns if c not in spec.conflict_key]
    base = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) ON CONFLICT ({key}) ").format(
        table=sql.Identifier(spec.name),
        cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        vals=sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        key=sql.SQL(", ").join(sql.Identifier(c) for c in spec.conflict_key),
    )
    if not updates:
        return base + sql.SQL("DO NOTHING")
    return base + sql.SQL("DO UPDATE SET {assignments}").format(
        assignments=sql.SQL(", ").join(
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in updates
        )
    )


# ---------------------------------------------------------------------------
# Populate
# ---------------------------------------------------------------------------

def populate_table(
    conn: psycopg.Connection,
    table: str | TableSpec,
    rows: list[dict[str, Any]],
    detachment_lookup: DetachmentLookup | None = None,
    rejects: RejectWriter | None = None,
) -> TableLoadResult:
    """Validate, convert and insert-or-replace rows into one table.

    Raises ConfigurationError when the table has no spec. For a
    detachment-scoped table a missing lookup is treated as empty, so
    every detachment_id is null.
    """
    spec = table if isinstance(table, TableSpec) else get_table_spec(table)
    result = TableLoadResult(table=spec.name, rows_read=len(rows))
    if not rows:
        log.info("No data for %s.", spec.name)
        return result

    log.info("Populating %s (%d rows)", spec.name, len(rows))
    fk_sets = prefetch_foreign_keys(conn, spec)
    lookup = detachment_lookup or {}
    columns = spec.insert_columns
    params: list[tuple[Any, ...]] = []

    for raw in rows:
        row = rename_headers(raw, spec.header_map)
        converted = convert_row(spec, row)
        reason = check_row(spec, converted, fk_sets)
        if reason is not None:
            result.skip(row, reason)
            if rejects is not None:
                rejects.write(spec.name, row, reason)
            continue
        if spec.detachment_scoped:
            converted["detachment_id"] = resolve_detachment(row, lookup)
        params.append(tuple(converted[c] for c in columns))

    if params:
        stmt = build_upsert(spec)
        with conn.transaction():
            conn.execute("SET CONSTRAINTS ALL DEFERRED")
            with conn.cursor() as cur:
                cur.executemany(stmt, params)
    result.inserted = len(params)

    if result.skipped:
        log.warning(
            "Skipped %d rows with missing keys or unknown foreign keys in %s",
            result.skipped, spec.name,
        )
        for skipped in result.skipped_rows:
            log.debug("  skipped %s row (%s): %r", spec.name, skipped.reason, skipped.row)
    log.info("Inserted %d rows into %s.", result.inserted, spec.name)
    return result


def load_table(
    conn: psycopg.Connection,
    table: str,
    data_dir: Path,
    detachment_lookup: DetachmentLookup | None = None,
    rejects: RejectWriter | None = None,
) -> TableLoadResult:
    """Read the table's CSV from data_dir and populate it."""
    spec = get_table_spec(table)
    rows = read_csv_file(data_dir / spec.csv_file)
    return populate_table(conn, spec, rows, detachment_lookup=detachment_lookup, rejects=rejects)
