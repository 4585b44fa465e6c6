"""
Health tracking for the exporter.

Records the outcome of the latest polling tick:
- last_tick_ts: ISO timestamp of the most recent tick.
- last_tick_duration_s: How long that tick's fan-out took.
- device_count: Number of devices polled in that tick.
- failed_count: Number of those polls that failed.

``status()`` feeds the ``GET /health`` endpoint. When a path is configured
the same data is rewritten to a JSON file after every tick, providing a
liveness signal that Docker HEALTHCHECK can inspect. Write errors are
logged and never raised, so a full disk cannot stop polling.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class HealthWriter:
    """Keeps the latest tick summary and optionally mirrors it to a file.

    Args:
        path: Filesystem path for the health JSON file, or ``None`` to keep
            the state in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._last_tick_ts: str | None = None
        self._last_tick_duration_s: float | None = None
        self._device_count: int = 0
        self._failed_count: int = 0

    def record_tick(
        self,
        *,
        duration_s: float,
        device_count: int,
        failed_count: int,
    ) -> None:
        """Record a completed tick and write the health file."""
        self._last_tick_ts = datetime.now(tz=UTC).isoformat()
        self._last_tick_duration_s = round(duration_s, 3)
        self._device_count = device_count
        self._failed_count = failed_count
        self._write()

    def status(self) -> dict[str, Any]:
        """Return the current health summary."""
        return {
            "last_tick_ts": self._last_tick_ts,
            "last_tick_duration_s": self._last_tick_duration_s,
            "device_count": self._device_count,
            "failed_count": self._failed_count,
        }

    def _write(self) -> None:
        if self.path is None:
            return
        try:
            self.path.write_text(json.dumps(self.status()), encoding="utf-8")
        except OSError:
            logger.warning("Failed to write health file %s", self.path, exc_info=True)
