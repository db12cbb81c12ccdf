"""wh40k_etl.detachments

Detachments have no source file of their own. They are reconstructed from
the distinct (faction_id, detachment) pairs referenced by the stratagem,
enhancement and detachment-ability exports, inserted to obtain surrogate
ids, and then handed to the table loader as a lookup so the three
detachment-scoped tables can carry a detachment_id.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import psycopg

from wh40k_etl.csv_loader import read_csv_file
from wh40k_etl.shared import RejectWriter, TableLoadResult
from wh40k_etl.table_loader import DetachmentLookup, fetch_key_set
from wh40k_etl.tables import (
    DETACHMENT_FACTION_COL,
    DETACHMENT_NAME_COL,
    DETACHMENT_SCOPED_TABLES,
    DETACHMENTS_TABLE,
    get_table_spec,
)

log = logging.getLogger(__name__)


def collect_detachment_pairs(*sources: Iterable[dict[str, Any]]) -> set[tuple[str, str]]:
    """Distinct (faction_id, detachment name) pairs across all sources.

    Rows lacking either value contribute nothing.
    """
    pairs: set[tuple[str, str]] = set()
    for rows in sources:
        for row in rows:
            faction = row.get(DETACHMENT_FACTION_COL)
            name = row.get(DETACHMENT_NAME_COL)
            if faction and name:
                pairs.add((faction, name))
    return pairs


def fetch_detachment_lookup(conn: psycopg.Connection) -> DetachmentLookup:
    rows = conn.execute("SELECT id, faction_id, name FROM detachments").fetchall()
    return {(faction_id, name): det_id for det_id, faction_id, name in rows}


def derive_detachments(
    conn: psycopg.Connection,
    sources: list[list[dict[str, Any]]],
    rejects: RejectWriter | None = None,
) -> tuple[DetachmentLookup, TableLoadResult]:
    """Insert one detachment per distinct pair and return the lookup.

    Pairs whose faction is not loaded are skipped and reported; the rows
    that reference them will not resolve and get a null detachment_id.
    An empty pair set skips the insert entirely.
    """
    pairs = collect_detachment_pairs(*sources)
    result = TableLoadResult(table=DETACHMENTS_TABLE, rows_read=len(pairs))
    if not pairs:
        log.info("No detachments referenced by %s.", ", ".join(DETACHMENT_SCOPED_TABLES))
        return {}, result

    factions = fetch_key_set(conn, "factions")
    accepted: list[tuple[str, str]] = []
    for faction, name in sorted(pairs):
        if faction not in factions:
            row = {"faction_id": faction, "name": name}
            reason = f"fk_not_found:faction_id={faction!r}"
            result.skip(row, reason)
            if rejects is not None:
                rejects.write(DETACHMENTS_TABLE, row, reason)
            continue
        accepted.append((faction, name))

    existing = conn.execute("SELECT count(*) FROM detachments").fetchone()[0]
    if accepted:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO detachments (faction_id, name)
                    VALUES (%s, %s)
                    ON CONFLICT (faction_id, name) DO NOTHING
                    """,
                    accepted,
                )
    lookup = fetch_detachment_lookup(conn)
    # Pairs already present hit ON CONFLICT DO NOTHING and are not counted.
    result.inserted = len(lookup) - existing
    if result.skipped:
        log.warning("Skipped %d detachments with unknown factions", result.skipped)
    log.info("Inserted %d rows into %s.", result.inserted, DETACHMENTS_TABLE)
    log.info("Created detachment lookup with %d entries.", len(lookup))
    return lookup, result


def derive_detachments_from_dir(
    conn: psycopg.Connection,
    data_dir: Path,
    rejects: RejectWriter | None = None,
) -> tuple[DetachmentLookup, TableLoadResult]:
    sources = [
        read_csv_file(data_dir / get_table_spec(table).csv_file)
        for table in DETACHMENT_SCOPED_TABLES
    ]
    return derive_detachments(conn, sources, rejects=rejects)
