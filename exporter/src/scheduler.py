"""
Polling scheduler: one concurrent fan-out over all registered plugs per tick.

Each tick takes a registry snapshot, starts one poll per device with
``asyncio.gather`` and waits for all of them before the tick ends. Because
the next tick only starts after the previous fan-out completed, there is at
most one in-flight poll per device, so no two writers ever touch the same
store slot. Every poll is bounded by the per-device timeout, so a hung plug
delays its own reading and nothing else.

Ticks are spaced ``interval_s`` apart measured from tick start, so the
period does not drift with fleet size or with slow devices.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from exporter.src.health import HealthWriter
    from exporter.src.poller import DevicePoller
    from exporter.src.registry import DeviceRegistry
    from exporter.src.store import MetricsStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S: float = 5.0


class PollingScheduler:
    """Periodic driver of device polls.

    Args:
        registry: Source of the devices to poll on each tick.
        poller: Performs one poll per device.
        store: Receives the duration of each fan-out.
        interval_s: Seconds between tick starts.
        health: Optional health writer updated after every tick.
    """

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        poller: DevicePoller,
        store: MetricsStore,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        health: HealthWriter | None = None,
    ) -> None:
        self._registry = registry
        self._poller = poller
        self._store = store
        self._interval_s = interval_s
        self._health = health

    async def tick(self) -> tuple[int, int]:
        """Poll every registered device once, concurrently.

        Returns:
            ``(ok_count, failed_count)`` for this tick.
        """
        devices = self._registry.snapshot()
        start = time.monotonic()

        results = await asyncio.gather(
            *(self._poller.poll(device) for device in devices),
            return_exceptions=True,
        )

        ok = 0
        for device, result in zip(devices, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Poll of %s raised unexpectedly",
                    device.device_id,
                    exc_info=result,
                )
            elif result:
                ok += 1
        failed = len(devices) - ok

        duration = time.monotonic() - start
        self._store.record_cycle(duration)
        if self._health is not None:
            self._health.record_tick(
                duration_s=duration,
                device_count=len(devices),
                failed_count=failed,
            )

        logger.debug(
            "Tick polled %d device(s) in %.3fs (%d failed)",
            len(devices),
            duration,
            failed,
        )
        return ok, failed

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Tick until *shutdown_event* is set.

        The first tick runs immediately. Errors inside a tick are logged and
        the loop continues.
        """
        logger.info("Polling loop started (interval=%ss)", self._interval_s)
        while not shutdown_event.is_set():
            start = time.monotonic()
            try:
                await self.tick()
            except Exception:
                logger.error("Polling tick error", exc_info=True)

            delay = max(0.0, self._interval_s - (time.monotonic() - start))
            # Use wait with timeout so we can check shutdown between sleeps
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
        logger.info("Polling loop stopped")
