"""
Unit tests for the powerbox health writer module.

Tests verify:
- HealthWriter.record_sample() only updates in-memory state.
- HealthWriter.record_window() writes health.json with every field.
- Window records preserve the last sample timestamp and count windows.

CHANGELOG:
- 2026-10-19: Cover sample/window records (STORY-112)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from powerbox.src.health import HealthWriter

_ALL_FIELDS = {"last_sample_ts", "last_window_ts", "windows_closed", "topology"}

# ---------------------------------------------------------------------------
# Test: record_sample does not touch the file
# ---------------------------------------------------------------------------


class TestRecordSample:
    """Samples arrive at line-cycle rate and must not rewrite the file."""

    def test_record_sample_does_not_write(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_sample()

        assert not health_path.exists()

    def test_sample_ts_appears_on_next_window(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_sample()
        writer.record_window("3x400V (3P+N)")

        data = json.loads(health_path.read_text())
        assert data["last_sample_ts"] is not None
        # Should be a valid ISO timestamp
        assert "T" in data["last_sample_ts"]


# ---------------------------------------------------------------------------
# Test: record_window writes the health file
# ---------------------------------------------------------------------------


class TestRecordWindow:
    def test_record_window_writes_health_file(self, tmp_path: Path) -> None:
        """Calling record_window() creates health.json with all fields set."""
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_window("Single Phase (L1)")

        data = json.loads(health_path.read_text())
        assert set(data) == _ALL_FIELDS
        assert data["windows_closed"] == 1
        assert data["topology"] == "Single Phase (L1)"
        assert "T" in data["last_window_ts"]
        assert data["last_sample_ts"] is None

    def test_windows_counted_and_topology_updated(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_window("Unknown / Fluctuating")
        writer.record_window("3x230V Delta (L1-L2)")

        data = json.loads(health_path.read_text())
        assert data["windows_closed"] == 2
        assert data["topology"] == "3x230V Delta (L1-L2)"

    def test_window_preserves_sample_ts(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_sample()
        writer.record_window("3x400V (3P+N)")
        sample_ts = json.loads(health_path.read_text())["last_sample_ts"]

        writer.record_window("3x400V (3P+N)")
        assert json.loads(health_path.read_text())["last_sample_ts"] == sample_ts

    def test_accepts_str_path(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(str(health_path))

        writer.record_window("3x400V (3P+N)")

        assert health_path.exists()
