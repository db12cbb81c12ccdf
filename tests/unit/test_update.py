"""Unit tests for wh40k_etl.update.UpdateCoordinator.

The remote client and population callable are fakes; the local state is
a real file under tmp_path.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from wh40k_etl.local_state import LocalState
from wh40k_etl.shared import DownloadBatchError, DownloadResult, PopulationError, PopulationReport
from wh40k_etl.update import (
    STATUS_FAILED,
    STATUS_MARKER_UNKNOWN,
    STATUS_UP_TO_DATE,
    STATUS_UPDATED,
    UpdateCoordinator,
    is_stale,
)

OLD = datetime(2024, 1, 1, tzinfo=timezone.utc)
NEW = datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)


def _remote(marker):
    remote = MagicMock()
    remote.fetch_remote_marker.return_value = marker
    return remote


@pytest.fixture
def state(tmp_path):
    return LocalState.in_dir(tmp_path)


class TestIsStale:
    def test_no_local(self):
        assert is_stale(NEW, None)

    def test_newer(self):
        assert is_stale(NEW, OLD)

    def test_equal_is_not_stale(self):
        assert not is_stale(NEW, NEW)

    def test_older_remote_is_not_stale(self):
        assert not is_stale(OLD, NEW)


class TestCheckForUpdates:
    def test_first_run_populates_and_records_marker(self, state):
        populate = MagicMock(return_value=PopulationReport())
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()

        assert result.status == STATUS_UPDATED
        assert result.ok
        populate.assert_called_once_with(NEW)
        assert state.read() == NEW

    def test_newer_remote_populates(self, state):
        state.write(OLD)
        populate = MagicMock(return_value=PopulationReport())
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()

        assert result.status == STATUS_UPDATED
        assert result.local_marker == OLD
        assert state.read() == NEW

    def test_up_to_date_does_nothing(self, state):
        state.write(NEW)
        populate = MagicMock()
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()

        assert result.status == STATUS_UP_TO_DATE
        populate.assert_not_called()

    def test_unknown_remote_marker(self, state):
        state.write(OLD)
        populate = MagicMock()
        result = UpdateCoordinator(_remote(None), state, populate).check_for_updates()

        assert result.status == STATUS_MARKER_UNKNOWN
        assert result.ok
        populate.assert_not_called()
        assert state.read() == OLD

    def test_failed_population_leaves_marker(self, state):
        state.write(OLD)
        failure = DownloadBatchError(
            [DownloadResult("Datasheets.csv", "u", success=False, error="HTTP 500")], total=18
        )
        populate = MagicMock(side_effect=PopulationError("download", failure))
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()

        assert result.status == STATUS_FAILED
        assert not result.ok
        assert "download" in result.error
        assert state.read() == OLD

    def test_failed_first_run_leaves_no_marker(self, state):
        populate = MagicMock(side_effect=PopulationError("schema-init", RuntimeError("boom")))
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()

        assert result.status == STATUS_FAILED
        assert state.read() is None
        assert not state.path.exists()

    def test_to_dict(self, state):
        populate = MagicMock(return_value=PopulationReport())
        result = UpdateCoordinator(_remote(NEW), state, populate).check_for_updates()
        payload = result.to_dict()
        assert payload["status"] == "updated"
        assert payload["remote_marker"] == "2024-05-01T10:30:00Z"
        assert payload["local_marker"] is None
        assert payload["population"]["rows_inserted"] == 0
