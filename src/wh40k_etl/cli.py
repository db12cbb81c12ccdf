"""wh40k_etl.cli

Command-line entrypoints.

Usage (full rebuild):
    python -m wh40k_etl.cli populate \\
        --db-dsn "$WH40K_DB_DSN" \\
        --remote "$WH40K_REMOTE" \\
        --data-dir ./data

Usage (offline rebuild from CSVs already on disk):
    python -m wh40k_etl.cli populate --db-dsn "$WH40K_DB_DSN" --skip-download

Usage (scheduled incremental update):
    python -m wh40k_etl.cli update --db-dsn "$WH40K_DB_DSN" --remote "$WH40K_REMOTE"

Usage (read API):
    python -m wh40k_etl.cli serve --port 3000
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from pathlib import Path
from typing import NoReturn

import click
import psycopg

from wh40k_etl.local_state import LocalState
from wh40k_etl.populate import run_population
from wh40k_etl.remote_source import REMOTE_ENV_VAR, DownloadOptions, RemoteSource
from wh40k_etl.shared import EtlError, RejectWriter, write_run_report
from wh40k_etl.update import UpdateCoordinator

DB_DSN_ENV = "WH40K_DB_DSN"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _download_options(
    max_retries: int, retry_delay: float, rate_limit: float, timeout: float
) -> DownloadOptions:
    return DownloadOptions(
        max_retries=max_retries,
        retry_delay=retry_delay,
        rate_limit=rate_limit,
        timeout=timeout,
    )


def _fail(run_id: str, message: str) -> NoReturn:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


# Options shared by populate and update.
_COMMON_OPTIONS = [
    click.option("--db-dsn", required=True, envvar=DB_DSN_ENV, help="PostgreSQL DSN"),
    click.option("--remote", default=None, envvar=REMOTE_ENV_VAR, help="Base64-encoded remote base URL"),
    click.option("--data-dir", default="./data", show_default=True, type=click.Path(), help="Directory for downloaded CSVs and the local marker"),
    click.option("--schema-path", default=None, type=click.Path(exists=True), help="DDL file (defaults to the bundled schema.sql)"),
    click.option("--max-retries", default=3, type=int, show_default=True, help="Attempts per request"),
    click.option("--retry-delay", default=1.0, type=float, show_default=True, help="Seconds between attempts"),
    click.option("--rate-limit", default=0.2, type=float, show_default=True, help="Seconds to wait after each downloaded file"),
    click.option("--timeout", default=5.0, type=float, show_default=True, help="Per-request timeout in seconds"),
    click.option("--rejects-path", default="./artifacts/rejects/wh40k_rejects.csv", show_default=True, type=click.Path()),
    click.option("--run-id", default=None, help="Override UUID for log correlation"),
    click.option("--verbose", is_flag=True, default=False),
]


def common_options(func):
    for option in reversed(_COMMON_OPTIONS):
        func = option(func)
    return func


@click.group()
def main() -> None:
    """Wahapedia rules dataset ingestion."""


@main.command()
@common_options
@click.option("--skip-download", is_flag=True, default=False, help="Load the CSVs already in --data-dir")
def populate(
    db_dsn: str,
    remote: str | None,
    data_dir: str,
    schema_path: str | None,
    max_retries: int,
    retry_delay: float,
    rate_limit: float,
    timeout: float,
    rejects_path: str,
    run_id: str | None,
    verbose: bool,
    skip_download: bool,
) -> None:
    """Drop, recreate and fully repopulate the database."""
    _configure_logging(verbose)
    run_id = run_id or str(uuid.uuid4())
    click.echo(f"[{run_id}] Starting populate run (skip_download={skip_download})")

    rejects = RejectWriter(Path(rejects_path))
    try:
        source = None
        if not skip_download:
            source = RemoteSource(
                remote, _download_options(max_retries, retry_delay, rate_limit, timeout)
            )
        with psycopg.connect(db_dsn, autocommit=True) as conn:
            report = run_population(
                conn, source, Path(data_dir),
                schema_path=Path(schema_path) if schema_path else None,
                download=not skip_download,
                rejects=rejects,
            )
    except EtlError as exc:
        _fail(run_id, str(exc))
    finally:
        rejects.close()

    report_path = write_run_report(run_id, "populate", {"population": report.to_dict()})
    click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    if rejects.count:
        click.echo(f"[{run_id}] {rejects.count} skipped row(s) written to {rejects_path}")
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(f"[{run_id}] Done.")


@main.command()
@common_options
def update(
    db_dsn: str,
    remote: str | None,
    data_dir: str,
    schema_path: str | None,
    max_retries: int,
    retry_delay: float,
    rate_limit: float,
    timeout: float,
    rejects_path: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Repopulate only if the remote dataset is newer than the local marker."""
    _configure_logging(verbose)
    run_id = run_id or str(uuid.uuid4())
    click.echo(f"[{run_id}] Starting update check")

    data_path = Path(data_dir)
    rejects = RejectWriter(Path(rejects_path))
    try:
        source = RemoteSource(
            remote, _download_options(max_retries, retry_delay, rate_limit, timeout)
        )
        with psycopg.connect(db_dsn, autocommit=True) as conn:
            coordinator = UpdateCoordinator(
                source,
                LocalState.in_dir(data_path),
                lambda marker: run_population(
                    conn, source, data_path,
                    schema_path=Path(schema_path) if schema_path else None,
                    marker=marker,
                    rejects=rejects,
                ),
            )
            result = coordinator.check_for_updates()
    except EtlError as exc:
        _fail(run_id, str(exc))
    finally:
        rejects.close()

    report_path = write_run_report(run_id, "update", result.to_dict())
    click.echo(f"[{run_id}] Update status: {result.status}")
    click.echo(f"[{run_id}] Run report: {report_path}")
    if not result.ok:
        _fail(run_id, result.error or "update failed")


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=3000, type=int, show_default=True)
def serve(host: str, port: int) -> None:
    """Run the read-only HTTP API."""
    import uvicorn

    _configure_logging(False)
    uvicorn.run("wh40k_etl.api:app", host=host, port=port)


if __name__ == "__main__":
    main()
