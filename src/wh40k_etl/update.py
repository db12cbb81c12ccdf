"""wh40k_etl.update

Incremental-update decision: repopulate only when the remote dataset is
strictly newer than the one recorded locally, and advance the local
marker only after a fully successful population.

Concurrent update checks are not safe; the deployment must run at most
one at a time (a single scheduled job).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from wh40k_etl.local_state import LocalState
from wh40k_etl.normalize import format_marker
from wh40k_etl.remote_source import RemoteSource
from wh40k_etl.shared import EtlError, PopulationReport

log = logging.getLogger(__name__)

STATUS_MARKER_UNKNOWN = "marker_unknown"
STATUS_UP_TO_DATE = "up_to_date"
STATUS_UPDATED = "updated"
STATUS_FAILED = "failed"

Populate = Callable[[datetime], PopulationReport]


@dataclass
class UpdateResult:
    status: str
    remote_marker: datetime | None = None
    local_marker: datetime | None = None
    report: PopulationReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "remote_marker": format_marker(self.remote_marker) if self.remote_marker else None,
            "local_marker": format_marker(self.local_marker) if self.local_marker else None,
            "error": self.error,
            "population": self.report.to_dict() if self.report else None,
        }


def is_stale(remote: datetime, local: datetime | None) -> bool:
    """An absent local marker is infinitely old."""
    return local is None or remote > local


class UpdateCoordinator:
    def __init__(
        self,
        remote: RemoteSource,
        local_state: LocalState,
        populate: Populate,
    ) -> None:
        self._remote = remote
        self._local_state = local_state
        self._populate = populate

    def check_for_updates(self) -> UpdateResult:
        log.info("--- Starting update check ---")
        remote_marker = self._remote.fetch_remote_marker()
        if remote_marker is None:
            log.warning("Could not determine remote update time. Aborting.")
            return UpdateResult(STATUS_MARKER_UNKNOWN)

        local_marker = self._local_state.read()
        if not is_stale(remote_marker, local_marker):
            log.info("No new data found. Everything is up-to-date.")
            return UpdateResult(STATUS_UP_TO_DATE, remote_marker, local_marker)

        log.info(
            "New data found (remote=%s, local=%s). Triggering database population...",
            format_marker(remote_marker),
            format_marker(local_marker) if local_marker else "none",
        )
        try:
            report = self._populate(remote_marker)
        except EtlError as exc:
            log.error("Population failed; local marker left unchanged: %s", exc)
            return UpdateResult(STATUS_FAILED, remote_marker, local_marker, error=str(exc))

        self._local_state.write(remote_marker)
        log.info("--- Update check finished ---")
        return UpdateResult(STATUS_UPDATED, remote_marker, local_marker, report=report)
