"""
Registry of known plugs, keyed by stable device id.

Devices arrive from static configuration at startup and from discovery at
any time, including while a polling tick is running. Registration is
first-wins: once a device id is registered (or its registration is in
progress) further attempts for the same id are no-ops, whatever address
they carry.

On admission the registry asks the device for its display name once,
derives the metric prefix, stores the :class:`~exporter.src.models.Device`
and creates its zero-valued slot in the metrics store.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from exporter.src.models import Device
from exporter.src.naming import metric_prefix

if TYPE_CHECKING:
    from exporter.src.store import MetricsStore

logger = logging.getLogger(__name__)

NameResolver = Callable[[str, str], Awaitable[str | None]]
"""``(device_id, address) -> display name or None``."""


class DeviceRegistry:
    """Thread-safe, insertion-ordered mapping of device id to Device.

    Args:
        store: Metrics store that receives a slot for each admitted device.
        resolve_name: Async callable asked once per admitted device for its
            display name. Failures fall back to the device id.
    """

    def __init__(self, store: MetricsStore, resolve_name: NameResolver) -> None:
        self._store = store
        self._resolve_name = resolve_name
        self._lock = threading.Lock()
        self._devices: dict[str, Device] = {}
        self._pending: set[str] = set()

    async def register(self, device_id: str, address: str) -> bool:
        """Admit a device unless its id is already known.

        Args:
            device_id: Stable device identifier.
            address: Host or IP used for polling.

        Returns:
            ``True`` if the device was admitted, ``False`` if the id was
            already registered or being registered.
        """
        with self._lock:
            if device_id in self._devices or device_id in self._pending:
                logger.debug("Device %s already registered, ignoring %s", device_id, address)
                return False
            self._pending.add(device_id)

        try:
            name = await self._lookup_name(device_id, address)
            device = Device(
                device_id=device_id,
                address=address,
                name=name,
                metric_prefix=metric_prefix(name, device_id),
            )
            self._store.add_device(device)
            with self._lock:
                self._devices[device_id] = device
        finally:
            with self._lock:
                self._pending.discard(device_id)

        logger.info(
            "Registered plug %s at %s (id=%s, prefix=%s)",
            device.name,
            device.address,
            device.device_id,
            device.metric_prefix,
        )
        return True

    async def _lookup_name(self, device_id: str, address: str) -> str:
        """Resolve the display name, falling back to *device_id*."""
        try:
            name = await self._resolve_name(device_id, address)
        except Exception:
            logger.warning(
                "Name resolution for %s at %s failed, using device id",
                device_id,
                address,
                exc_info=True,
            )
            return device_id
        return name or device_id

    def snapshot(self) -> list[Device]:
        """Return the registered devices in registration order."""
        with self._lock:
            return list(self._devices.values())

    def get(self, device_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)
