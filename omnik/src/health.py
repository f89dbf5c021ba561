"""
Health file writer for the edge daemon.

Writes a JSON health file at a configurable path with four fields:
- last_statistics_ts: ISO timestamp of the most recently decoded frame.
- last_pull_failure_ts: ISO timestamp of the most recent reported pull failure.
- connected_clients: Number of devices currently connected to the listeners.
- listeners: Names of the listeners currently accepting connections.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-18: Track connected clients and listener names
- 2026-10-15: Initial creation (STORY-111)

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes engine health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_statistics_ts: str | None = None
        self._last_pull_failure_ts: str | None = None
        self._connected_clients: int = 0
        self._listeners: list[str] = []

    def record_statistics(self) -> None:
        """Record a decoded frame and write health file."""
        self._last_statistics_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def record_pull_failure(self) -> None:
        """Record a reported pull failure and write health file."""
        self._last_pull_failure_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def set_connected_clients(self, count: int) -> None:
        """Update the connected client count and write health file.

        Args:
            count: Number of currently open device connections.
        """
        self._connected_clients = count
        self._write()

    def set_listeners(self, names: Iterable[str]) -> None:
        """Update the active listener names and write health file."""
        self._listeners = sorted(names)
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_statistics_ts": self._last_statistics_ts,
            "last_pull_failure_ts": self._last_pull_failure_ts,
            "connected_clients": self._connected_clients,
            "listeners": self._listeners,
        }
        self.path.write_text(json.dumps(data))
