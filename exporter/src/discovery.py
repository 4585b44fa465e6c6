"""
Device discovery: pluggable adapters feeding the registry through a queue.

A discovery adapter is any object with ``async discover()`` returning
``(device_id, address)`` candidates. :func:`run_discovery_loop` calls the
adapter on its own cadence and puts candidates on an ``asyncio.Queue``;
:func:`consume_discoveries` drains that queue into
:meth:`DeviceRegistry.register`, which ignores ids it already knows. The
queue decouples the adapter's timing from the registry's.

:class:`MdnsDiscovery` browses ``_shelly._tcp.local.`` with zeroconf and
admits instances whose name starts with ``shellyplugsg3-``.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-008)
- 2026-10-19: Register candidates concurrently; close zeroconf if the browser fails (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from typing import TYPE_CHECKING, Protocol

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from exporter.src.models import DiscoveredDevice

if TYPE_CHECKING:
    from exporter.src.registry import DeviceRegistry

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_TYPE = "_shelly._tcp.local."
DEFAULT_NAME_PREFIX = "shellyplugsg3-"
DEFAULT_DISCOVERY_INTERVAL_S: float = 60.0

# How long to wait for each instance's address records.
_RESOLVE_TIMEOUT_MS = 3000


class DiscoveryAdapter(Protocol):
    """Source of candidate devices."""

    async def discover(self) -> list[DiscoveredDevice]: ...


def device_id_from_service_name(name: str, service_type: str) -> str:
    """Strip the service type suffix from an mDNS instance name.

    >>> device_id_from_service_name(
    ...     "shellyplugsg3-a1b2._shelly._tcp.local.", "_shelly._tcp.local."
    ... )
    'shellyplugsg3-a1b2'
    """
    suffix = "." + service_type.rstrip(".")
    instance = name.rstrip(".")
    if instance.endswith(suffix):
        instance = instance[: -len(suffix)]
    return instance


class MdnsDiscovery:
    """Browses mDNS for Shelly plugs.

    Each :meth:`discover` call opens a zeroconf instance, listens for
    ``browse_s`` seconds, resolves the matching instances to their first
    IPv4 address and closes the instance again.

    Args:
        service_type: mDNS service type to browse.
        name_prefix: Instance name prefix identifying the plug model.
        browse_s: Seconds to listen for announcements per run.
    """

    def __init__(
        self,
        *,
        service_type: str = DEFAULT_SERVICE_TYPE,
        name_prefix: str = DEFAULT_NAME_PREFIX,
        browse_s: float = 10.0,
    ) -> None:
        self._service_type = service_type
        self._name_prefix = name_prefix
        self._browse_s = browse_s

    def matches(self, device_id: str) -> bool:
        """Return whether *device_id* names a supported plug."""
        return device_id.startswith(self._name_prefix)

    async def discover(self) -> list[DiscoveredDevice]:
        """Run one browse window and return the resolved plugs.

        Errors are logged and yield an empty list.
        """
        try:
            return await self._browse()
        except Exception:
            logger.warning("mDNS discovery failed", exc_info=True)
            return []

    async def _browse(self) -> list[DiscoveredDevice]:
        names: set[str] = set()

        def _on_service_state_change(
            zeroconf: Zeroconf,
            service_type: str,
            name: str,
            state_change: ServiceStateChange,
        ) -> None:
            if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
                names.add(name)

        aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        browser: AsyncServiceBrowser | None = None
        try:
            browser = AsyncServiceBrowser(
                aiozc.zeroconf,
                [self._service_type],
                handlers=[_on_service_state_change],
            )
            await asyncio.sleep(self._browse_s)
            found: list[DiscoveredDevice] = []
            for name in sorted(names):
                device_id = device_id_from_service_name(name, self._service_type)
                if not self.matches(device_id):
                    continue
                address = await self._resolve(aiozc, name)
                if address is None:
                    logger.warning("mDNS: no IPv4 address for %s", name)
                    continue
                logger.info("Shelly plug found: %s at %s", device_id, address)
                found.append(DiscoveredDevice(device_id, address))
            return found
        finally:
            if browser is not None:
                await browser.async_cancel()
            await aiozc.async_close()

    async def _resolve(self, aiozc: AsyncZeroconf, name: str) -> str | None:
        info = AsyncServiceInfo(self._service_type, name)
        if not await info.async_request(aiozc.zeroconf, _RESOLVE_TIMEOUT_MS):
            return None
        addresses = info.parsed_addresses(IPVersion.V4Only)
        return addresses[0] if addresses else None


# ---------------------------------------------------------------------------
# Producer / consumer loops
# ---------------------------------------------------------------------------


async def _discover_once(
    adapter: DiscoveryAdapter,
    queue: asyncio.Queue[DiscoveredDevice],
) -> int:
    """Run the adapter once and enqueue its candidates."""
    try:
        candidates = await adapter.discover()
    except Exception:
        logger.error("Discovery run error", exc_info=True)
        return 0
    for candidate in candidates:
        await queue.put(candidate)
    return len(candidates)


async def run_discovery_loop(
    adapter: DiscoveryAdapter,
    queue: asyncio.Queue[DiscoveredDevice],
    *,
    interval_s: float = DEFAULT_DISCOVERY_INTERVAL_S,
    shutdown_event: asyncio.Event,
) -> None:
    """Run discovery immediately, then every *interval_s*, until shutdown."""
    logger.info("Discovery loop started (interval=%ss)", interval_s)
    while not shutdown_event.is_set():
        logger.info("Running Shelly mDNS discovery")
        count = await _discover_once(adapter, queue)
        logger.debug("Discovery run yielded %d candidate(s)", count)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_s)
    logger.info("Discovery loop stopped")


async def consume_discoveries(
    queue: asyncio.Queue[DiscoveredDevice],
    registry: DeviceRegistry,
    *,
    shutdown_event: asyncio.Event,
    poll_s: float = 0.5,
) -> None:
    """Feed queued candidates into the registry until shutdown.

    Each candidate is registered in its own task, so a plug that never
    answers its name lookup does not hold back the ones queued after it.
    Duplicate ids are ignored by the registry. A failing registration is
    logged and does not stop the consumer. Registrations still running at
    shutdown are cancelled.
    """
    in_flight: set[asyncio.Task[bool]] = set()

    def _registration_done(candidate: DiscoveredDevice, task: asyncio.Task[bool]) -> None:
        in_flight.discard(task)
        queue.task_done()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Failed to register discovered device %s",
                candidate.device_id,
                exc_info=exc,
            )

    try:
        while not shutdown_event.is_set():
            try:
                candidate = await asyncio.wait_for(queue.get(), timeout=poll_s)
            except TimeoutError:
                continue
            task = asyncio.create_task(
                registry.register(candidate.device_id, candidate.address),
                name=f"register-{candidate.device_id}",
            )
            in_flight.add(task)
            task.add_done_callback(functools.partial(_registration_done, candidate))
    finally:
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
