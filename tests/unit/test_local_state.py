"""Unit tests for wh40k_etl.local_state."""

from datetime import datetime, timezone

from wh40k_etl.local_state import LOCAL_MARKER_FILE, LocalState

MARKER = datetime(2024, 5, 1, 10, 0, 0, 500000, tzinfo=timezone.utc)


class TestLocalState:
    def test_absent_file_is_none(self, tmp_path):
        assert LocalState(tmp_path / "missing.local").read() is None

    def test_write_then_read_exact(self, tmp_path):
        state = LocalState.in_dir(tmp_path)
        state.write(MARKER)
        assert state.read() == MARKER
        assert state.path == tmp_path / LOCAL_MARKER_FILE

    def test_write_creates_parent(self, tmp_path):
        state = LocalState(tmp_path / "nested" / "dir" / "marker")
        state.write(MARKER)
        assert state.path.read_text(encoding="utf-8") == "2024-05-01T10:00:00.500000Z"

    def test_overwrite(self, tmp_path):
        state = LocalState.in_dir(tmp_path)
        state.write(MARKER)
        later = datetime(2025, 1, 1, tzinfo=timezone.utc)
        state.write(later)
        assert state.read() == later

    def test_garbage_is_none(self, tmp_path):
        path = tmp_path / LOCAL_MARKER_FILE
        path.write_text("yesterday", encoding="utf-8")
        assert LocalState(path).read() is None

    def test_trailing_newline_tolerated(self, tmp_path):
        path = tmp_path / LOCAL_MARKER_FILE
        path.write_text("2024-05-01T00:00:00Z\n", encoding="utf-8")
        assert LocalState(path).read() == datetime(2024, 5, 1, tzinfo=timezone.utc)
