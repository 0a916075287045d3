"""
Health file writer for the meter host.

Writes a JSON health file at a configurable path with the fields:
- last_tick_ts: ISO timestamp of the most recent tick.
- last_send_ts: ISO timestamp of the most recent successful send.
- connection_status: disconnected, connected or failed.
- sent_count / skipped_count / error_count: tick outcome counters.

The file is rewritten on every state change, providing a simple liveness
signal that a container HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-16: Track tick outcomes and connection status (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from smartmeter.src.models import ConnectionStatus, SchedulerState, TickOutcome


class HealthWriter:
    """Writes meter health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_tick_ts: str | None = None
        self._last_send_ts: str | None = None
        self._connection_status = ConnectionStatus.DISCONNECTED.value
        self._sent_count = 0
        self._skipped_count = 0
        self._error_count = 0

    def record_tick(
        self,
        outcome: TickOutcome | None,
        state: SchedulerState,
        connection_status: ConnectionStatus,
    ) -> None:
        """Record a tick outcome and write the health file.

        Args:
            outcome: Outcome of the tick just run.
            state: Scheduler state snapshot after the tick.
            connection_status: Connection status after the tick.
        """
        now = datetime.now(tz=UTC).isoformat()
        self._last_tick_ts = now
        if outcome is TickOutcome.SENT:
            self._last_send_ts = now
        self._connection_status = ConnectionStatus(connection_status).value
        self._sent_count = state.sent_count
        self._skipped_count = state.skipped_count
        self._error_count = state.error_count
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_tick_ts": self._last_tick_ts,
            "last_send_ts": self._last_send_ts,
            "connection_status": self._connection_status,
            "sent_count": self._sent_count,
            "skipped_count": self._skipped_count,
            "error_count": self._error_count,
        }
        self.path.write_text(json.dumps(data))
