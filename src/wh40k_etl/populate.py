"""wh40k_etl.populate

Full rebuild of the rules database from the Wahapedia exports.

Stages run strictly in this order; each must commit before the next
starts because later foreign-key pre-fetches read earlier tables:

  schema-init
    → download                      (skipped for offline rebuilds)
    → load-independent-tables       factions, sources, abilities
    → load-unit-profile-and-children datasheets + per-datasheet lines/links
    → derive-detachments            distinct (faction, detachment) pairs
    → load-detachment-scoped-tables stratagems, enhancements, detachment abilities
    → load-cross-link-tables        datasheet ↔ stratagem/enhancement/detachment ability
    → record-marker                 last_update row (when a marker is known)

Any failure aborts the run with PopulationError naming the stage. A
partially loaded database is left behind in that case; the caller must
not advance its local marker.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path

import psycopg

from wh40k_etl.detachments import derive_detachments_from_dir
from wh40k_etl.normalize import format_marker
from wh40k_etl.remote_source import RemoteSource
from wh40k_etl.shared import EtlError, PopulationError, PopulationReport, RejectWriter
from wh40k_etl.table_loader import DetachmentLookup, load_table
from wh40k_etl.tables import (
    CROSS_LINK_TABLES,
    CSV_FILES,
    DETACHMENT_SCOPED_TABLES,
    INDEPENDENT_TABLES,
    UNIT_PROFILE_TABLES,
    validate_registry,
)

log = logging.getLogger(__name__)

STAGES = (
    "schema-init",
    "download",
    "load-independent-tables",
    "load-unit-profile-and-children",
    "derive-detachments",
    "load-detachment-scoped-tables",
    "load-cross-link-tables",
    "record-marker",
)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

def read_schema(schema_path: Path | None = None) -> str:
    if schema_path is not None:
        return schema_path.read_text(encoding="utf-8")
    return resources.files("wh40k_etl").joinpath("schema.sql").read_text(encoding="utf-8")


def initialize_schema(conn: psycopg.Connection, schema_path: Path | None = None) -> None:
    """Drop and recreate every table from the DDL, in one transaction."""
    ddl = read_schema(schema_path)
    with conn.transaction():
        conn.execute(ddl)
    log.info("Database schema initialized.")


def record_marker(conn: psycopg.Connection, marker: datetime) -> None:
    with conn.transaction():
        conn.execute(
            """
            INSERT INTO last_update (id, last_update) VALUES (1, %s)
            ON CONFLICT (id) DO UPDATE SET last_update = EXCLUDED.last_update
            """,
            (marker,),
        )


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def _load_stage(
    conn: psycopg.Connection,
    tables: tuple[str, ...],
    data_dir: Path,
    report: PopulationReport,
    rejects: RejectWriter | None,
    detachment_lookup: DetachmentLookup | None = None,
) -> None:
    for table in tables:
        report.add(
            load_table(
                conn, table, data_dir,
                detachment_lookup=detachment_lookup, rejects=rejects,
            )
        )


def run_population(
    conn: psycopg.Connection,
    remote: RemoteSource | None,
    data_dir: Path,
    *,
    schema_path: Path | None = None,
    marker: datetime | None = None,
    download: bool = True,
    rejects: RejectWriter | None = None,
) -> PopulationReport:
    """Rebuild the whole database. Returns the per-table report.

    With download=False the CSVs already in data_dir are loaded and no
    remote client is needed.
    """
    validate_registry()
    if download and remote is None:
        raise PopulationError("download", EtlError("no remote source configured"))

    report = PopulationReport(marker=format_marker(marker) if marker else None)
    stage = STAGES[0]
    log.info("--- Starting database population ---")
    try:
        log.info("Stage: %s", stage)
        initialize_schema(conn, schema_path)

        stage = "download"
        log.info("Stage: %s", stage)
        if download:
            results = remote.fetch_all(CSV_FILES, data_dir)
            report.files_downloaded = len(results)
        else:
            log.info("Skipping download; loading CSVs from %s", data_dir)

        stage = "load-independent-tables"
        log.info("Stage: %s", stage)
        _load_stage(conn, INDEPENDENT_TABLES, data_dir, report, rejects)

        stage = "load-unit-profile-and-children"
        log.info("Stage: %s", stage)
        _load_stage(conn, UNIT_PROFILE_TABLES, data_dir, report, rejects)

        stage = "derive-detachments"
        log.info("Stage: %s", stage)
        lookup, detachments = derive_detachments_from_dir(conn, data_dir, rejects=rejects)
        report.add(detachments)
        report.detachments_derived = detachments.inserted

        stage = "load-detachment-scoped-tables"
        log.info("Stage: %s", stage)
        _load_stage(
            conn, DETACHMENT_SCOPED_TABLES, data_dir, report, rejects,
            detachment_lookup=lookup,
        )

        stage = "load-cross-link-tables"
        log.info("Stage: %s", stage)
        _load_stage(conn, CROSS_LINK_TABLES, data_dir, report, rejects)

        stage = "record-marker"
        log.info("Stage: %s", stage)
        if marker is not None:
            record_marker(conn, marker)
    except Exception as exc:
        log.error("Population failed at stage %s: %s", stage, exc)
        raise PopulationError(stage, exc) from exc

    report.finished_at = datetime.now(timezone.utc).isoformat()
    log.info(
        "--- Database population finished: %d rows inserted, %d skipped ---",
        report.rows_inserted, report.rows_skipped,
    )
    return report
