"""
Thread-safe store of the last-known telemetry of every registered plug.

The store keeps one slot per device id, created when the registry admits the
device, holding the four telemetry fields plus the labels needed to export
them. Pollers write slots from the event loop while the scrape endpoint
reads them from a worker thread; a single lock guards all slots. Readers
copy the slots under the lock and serialize after releasing it, so a scrape
never blocks writers for longer than the copy.

:class:`StoreCollector` exposes the store to ``prometheus_client`` with fixed
metric names and per-device labels.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from exporter.src.models import TELEMETRY_FIELDS, Device, TelemetrySample


@dataclass
class _Slot:
    device: Device
    values: dict[str, float] = field(
        default_factory=lambda: dict.fromkeys(TELEMETRY_FIELDS, 0.0)
    )
    up: bool | None = None
    last_success_ts: float | None = None


@dataclass(frozen=True)
class DeviceReading:
    """Point-in-time copy of one device slot, safe to use without the lock."""

    device: Device
    sample: TelemetrySample
    up: bool | None
    last_success_ts: float | None


class MetricsStore:
    """Last-known telemetry per device id.

    Every registered device has all four fields, starting at zero, so the
    exported series set has the same shape for every device at all times.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, _Slot] = {}
        self._last_cycle_s: float | None = None

    def add_device(self, device: Device) -> None:
        """Create a zero-valued slot for *device*; no-op if it exists."""
        with self._lock:
            if device.device_id not in self._slots:
                self._slots[device.device_id] = _Slot(device=device)

    def set(self, device_id: str, field_name: str, value: float) -> None:
        """Overwrite one telemetry field of one device.

        Raises:
            ValueError: If *field_name* is not a telemetry field.
            KeyError: If *device_id* has no slot.
        """
        if field_name not in TELEMETRY_FIELDS:
            raise ValueError(f"Unknown telemetry field '{field_name}'")
        with self._lock:
            self._slots[device_id].values[field_name] = float(value)

    def set_sample(self, device_id: str, sample: TelemetrySample, *, ok: bool) -> None:
        """Overwrite all four fields of one device and record the poll outcome.

        Raises:
            KeyError: If *device_id* has no slot.
        """
        values = sample.model_dump()
        with self._lock:
            slot = self._slots[device_id]
            slot.values.update(values)
            slot.up = ok
            if ok:
                slot.last_success_ts = time.time()

    def get(self, device_id: str) -> TelemetrySample:
        """Return the current reading of one device.

        Raises:
            KeyError: If *device_id* has no slot.
        """
        with self._lock:
            values = dict(self._slots[device_id].values)
        return TelemetrySample(**values)

    def record_cycle(self, duration_s: float) -> None:
        """Remember how long the last polling fan-out took."""
        with self._lock:
            self._last_cycle_s = duration_s

    @property
    def last_cycle_s(self) -> float | None:
        with self._lock:
            return self._last_cycle_s

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def snapshot(self) -> list[DeviceReading]:
        """Copy every slot under the lock, in registration order."""
        with self._lock:
            copies = [
                (slot.device, dict(slot.values), slot.up, slot.last_success_ts)
                for slot in self._slots.values()
            ]
        return [
            DeviceReading(
                device=device,
                sample=TelemetrySample(**values),
                up=up,
                last_success_ts=last_ok,
            )
            for device, values, up, last_ok in copies
        ]


# Metric name and help text per telemetry field.
_FIELD_METRICS: dict[str, tuple[str, str]] = {
    "power": ("shelly_plug_power_watts", "Active power in watts."),
    "current": ("shelly_plug_current_amps", "Current in amps."),
    "voltage": ("shelly_plug_voltage_volts", "Voltage in volts."),
    "temperature": ("shelly_plug_temperature_celsius", "Plug temperature in Celsius."),
}

DEVICE_LABELS = ["exporter", "device_id", "device", "name", "address"]


class StoreCollector(Collector):
    """Prometheus collector rendering a :class:`MetricsStore` snapshot.

    Args:
        store: The metrics store to read on every scrape.
        exporter_label: Value of the ``exporter`` label on every metric.
    """

    def __init__(self, store: MetricsStore, exporter_label: str) -> None:
        self._store = store
        self._exporter = exporter_label

    def collect(self) -> Iterator[GaugeMetricFamily]:
        readings = self._store.snapshot()
        last_cycle = self._store.last_cycle_s

        families = {
            name: GaugeMetricFamily(metric, help_text, labels=DEVICE_LABELS)
            for name, (metric, help_text) in _FIELD_METRICS.items()
        }
        up = GaugeMetricFamily(
            "shelly_plug_up",
            "Last poll of the plug succeeded (1), failed (0) or never ran (-1).",
            labels=DEVICE_LABELS,
        )
        last_ok = GaugeMetricFamily(
            "shelly_plug_last_success_timestamp_seconds",
            "Unix timestamp of the last successful poll (-1 never).",
            labels=DEVICE_LABELS,
        )

        for reading in readings:
            device = reading.device
            labels = [
                self._exporter,
                device.device_id,
                device.metric_prefix,
                device.name,
                device.address,
            ]
            for name, family in families.items():
                family.add_metric(labels, getattr(reading.sample, name))
            if reading.up is None:
                up.add_metric(labels, -1.0)
            else:
                up.add_metric(labels, 1.0 if reading.up else 0.0)
            last_ok.add_metric(
                labels,
                reading.last_success_ts if reading.last_success_ts is not None else -1.0,
            )

        devices = GaugeMetricFamily(
            "shelly_exporter_devices",
            "Number of registered plugs.",
            labels=["exporter"],
        )
        devices.add_metric([self._exporter], float(len(readings)))

        cycle = GaugeMetricFamily(
            "shelly_exporter_poll_cycle_duration_seconds",
            "Duration of the last polling fan-out over all plugs.",
            labels=["exporter"],
        )
        cycle.add_metric([self._exporter], last_cycle if last_cycle is not None else 0.0)

        yield from families.values()
        yield up
        yield last_ok
        yield devices
        yield cycle
