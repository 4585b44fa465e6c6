"""
Pydantic models for registered plugs and their telemetry readings.

``Device`` is owned by the registry and never mutated after admission.
``TelemetrySample`` is the last-known reading of one plug; a failed poll is
represented by :meth:`TelemetrySample.unavailable`, where every field is NaN,
so a scrape can tell "device reports zero" apart from "device unreachable".

CHANGELOG:
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel

TELEMETRY_FIELDS: tuple[str, ...] = ("power", "current", "voltage", "temperature")
"""Names of the four telemetry fields, in export order."""


class Device(BaseModel):
    """A registered Shelly plug.

    Attributes:
        device_id: Stable registry key (mDNS instance name or config key).
        address: Host or IP address used for polling.
        name: Display name resolved once at registration time.
        metric_prefix: Normalized slug derived from ``name``, e.g.
            ``shelly_living_room``.
    """

    model_config = {"frozen": True}

    device_id: str
    address: str
    name: str
    metric_prefix: str


class TelemetrySample(BaseModel):
    """Last-known electrical reading of one plug.

    Attributes:
        power: Active power in watts.
        current: Current in amps.
        voltage: Voltage in volts.
        temperature: Device temperature in degrees Celsius.
    """

    power: float = 0.0
    current: float = 0.0
    voltage: float = 0.0
    temperature: float = 0.0

    @classmethod
    def unavailable(cls) -> TelemetrySample:
        """Return a sample marking every field as unreadable (NaN)."""
        nan = float("nan")
        return cls(power=nan, current=nan, voltage=nan, temperature=nan)


class DiscoveredDevice(NamedTuple):
    """A ``(device_id, address)`` candidate yielded by discovery."""

    device_id: str
    address: str
