"""
Health file writer for the powerbox daemon.

Writes a JSON health file at a configurable path with four fields:
- last_sample_ts: ISO timestamp of the most recent accepted telemetry frame.
- last_window_ts: ISO timestamp of the most recent window close.
- windows_closed: Number of windows closed since start.
- topology: Topology detected at the last window close.

Samples arrive at line-cycle rate, so they only update the in-memory
state; the file is rewritten on every window close, providing a liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-19: Track sample/window activity instead of poll/upload (STORY-112)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes powerbox health status to a JSON file.

    Sample records only touch the in-memory state; a window record
    rewrites the health file with everything seen so far.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_sample_ts: str | None = None
        self._last_window_ts: str | None = None
        self._windows_closed: int = 0
        self._topology: str | None = None

    def record_sample(self) -> None:
        """Record an accepted telemetry frame (no file write)."""
        self._last_sample_ts = datetime.now(tz=UTC).isoformat()

    def record_window(self, topology: str) -> None:
        """Record a window close and write health file.

        Args:
            topology: Topology label detected for the window.
        """
        self._last_window_ts = datetime.now(tz=UTC).isoformat()
        self._windows_closed += 1
        self._topology = topology
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_sample_ts": self._last_sample_ts,
            "last_window_ts": self._last_window_ts,
            "windows_closed": self._windows_closed,
            "topology": self._topology,
        }
        self.path.write_text(json.dumps(data))
