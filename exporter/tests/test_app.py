"""
Integration tests for the FastAPI application.

The app runs its real lifespan under ``TestClient``; plugs are served by
the FakeFleet fixture through an injected ``httpx.MockTransport``.

Tests verify:
- The scrape endpoint serves Prometheus text with per-device labels.
- A reachable plug exports its reported values while a hung plug exports
  NaN, within one polling tick.
- The scrape path is configurable.
- /health and / respond.
- Discovered plugs are registered and polled alongside static ones.
- Shutdown stops the background loops without waiting out a discovery run.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from exporter.src.app import ExporterState, create_app
from exporter.src.config import ExporterSettings
from exporter.src.models import DiscoveredDevice
from fastapi.testclient import TestClient
from prometheus_client import CONTENT_TYPE_LATEST
from prometheus_client.parser import text_string_to_metric_families

if TYPE_CHECKING:
    from conftest import FakeFleet

_HOST_A = "10.0.0.1"
_HOST_B = "10.0.0.2"

_STATUS_A = {"apower": 12.5, "current": 0.1, "voltage": 230, "temperature": {"tC": 25}}


def _settings(**overrides: object) -> ExporterSettings:
    values: dict[str, object] = {
        "devices": {"plug-a": _HOST_A},
        "poll_interval_s": 1,
        "request_timeout_s": 0.2,
    }
    values.update(overrides)
    return ExporterSettings(**values)


def _wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll *predicate* until it holds or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def _state(client: TestClient) -> ExporterState:
    return client.app.state.exporter


def _polled(client: TestClient, device_id: str) -> bool:
    return any(
        reading.device.device_id == device_id and reading.up is not None
        for reading in _state(client).store.snapshot()
    )


def _samples(text: str) -> dict[tuple[str, str], float]:
    """Map (metric, device_id) to value for per-device series."""
    samples: dict[tuple[str, str], float] = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if "device_id" in sample.labels:
                samples[(sample.name, sample.labels["device_id"])] = sample.value
    return samples


class TestMetricsEndpoint:
    """The scrape endpoint renders the store."""

    def test_reachable_and_hung_plug(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        fleet.configs[_HOST_A] = {"device": {"name": "Kitchen"}}
        fleet.hanging.add(_HOST_B)
        settings = _settings(devices={"plug-a": _HOST_A, "plug-b": _HOST_B})
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            assert _wait_for(lambda: _polled(client, "plug-a") and _polled(client, "plug-b"))
            response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"] == CONTENT_TYPE_LATEST
        samples = _samples(response.text)
        assert samples[("shelly_plug_power_watts", "plug-a")] == 12.5
        assert samples[("shelly_plug_current_amps", "plug-a")] == 0.1
        assert samples[("shelly_plug_voltage_volts", "plug-a")] == 230.0
        assert samples[("shelly_plug_temperature_celsius", "plug-a")] == 25.0
        assert samples[("shelly_plug_up", "plug-a")] == 1.0
        for metric in (
            "shelly_plug_power_watts",
            "shelly_plug_current_amps",
            "shelly_plug_voltage_volts",
            "shelly_plug_temperature_celsius",
        ):
            assert math.isnan(samples[(metric, "plug-b")])
        assert samples[("shelly_plug_up", "plug-b")] == 0.0

    def test_device_labels(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        fleet.configs[_HOST_A] = {"device": {"name": "Kitchen"}}
        settings = _settings(exporter_label="lab")
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            assert _wait_for(lambda: _polled(client, "plug-a"))
            text = client.get("/metrics").text

        power = next(
            sample
            for family in text_string_to_metric_families(text)
            for sample in family.samples
            if sample.name == "shelly_plug_power_watts"
        )
        assert power.labels == {
            "exporter": "lab",
            "device_id": "plug-a",
            "device": "shelly_kitchen",
            "name": "Kitchen",
            "address": _HOST_A,
        }

    def test_custom_metrics_path(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        settings = _settings(metrics_path="/scrape")
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            assert client.get("/scrape").status_code == 200
            assert client.get("/metrics").status_code == 404

    def test_unnamed_plug_uses_device_id(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        settings = _settings()
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            device = _state(client).registry.get("plug-a")

        assert device is not None
        assert device.name == "plug-a"
        assert device.metric_prefix == "shelly_plug_a"


class TestAuxiliaryEndpoints:
    """/health and / report liveness."""

    def test_health(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        settings = _settings()
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            assert _wait_for(lambda: _state(client).health.status()["last_tick_ts"] is not None)
            body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["registered"] == 1
        assert body["device_count"] == 1
        assert body["failed_count"] == 0

    def test_health_file(self, fleet: FakeFleet, tmp_path: Path) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        path = tmp_path / "health.json"
        settings = _settings(health_file_path=str(path))
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app):
            assert _wait_for(path.exists)

    def test_root(self, fleet: FakeFleet) -> None:
        settings = _settings()
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            assert client.get("/").json() == {"status": "ok"}


class _StaticAdapter:
    """Discovery adapter returning the same candidates every run."""

    def __init__(self, candidates: list[DiscoveredDevice]) -> None:
        self._candidates = candidates

    async def discover(self) -> list[DiscoveredDevice]:
        return list(self._candidates)


class _SlowAdapter:
    """Discovery adapter whose runs take *delay_s* seconds."""

    def __init__(self, delay_s: float) -> None:
        self._delay_s = delay_s

    async def discover(self) -> list[DiscoveredDevice]:
        await asyncio.sleep(self._delay_s)
        return []


class TestDiscoveryWiring:
    """Discovered plugs join the polling set."""

    def test_discovered_plug_is_polled(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        fleet.status[_HOST_B] = {"apower": 3.0, "current": 0.02, "voltage": 229.0}
        fleet.configs[_HOST_B] = {"device": {"name": "Garage"}}
        settings = _settings(discovery_enabled=True)
        adapter = _StaticAdapter(
            [
                DiscoveredDevice("shellyplugsg3-bb", _HOST_B),
                # Already configured statically; ignored by the registry.
                DiscoveredDevice("plug-a", "10.0.0.99"),
            ]
        )
        app = create_app(
            settings, settings.devices, discovery=adapter, transport=fleet.transport()
        )

        with TestClient(app) as client:
            assert _wait_for(lambda: _polled(client, "shellyplugsg3-bb"), timeout=4.0)
            samples = _samples(client.get("/metrics").text)
            registry = _state(client).registry

            assert [d.device_id for d in registry.snapshot()] == ["plug-a", "shellyplugsg3-bb"]
            plug_a = registry.get("plug-a")
            assert plug_a is not None
            assert plug_a.address == _HOST_A

        assert samples[("shelly_plug_power_watts", "shellyplugsg3-bb")] == 3.0
        assert samples[("shelly_plug_temperature_celsius", "shellyplugsg3-bb")] == 0.0

    def test_discovery_only(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_B] = {"apower": 3.0}
        settings = _settings(devices={}, discovery_enabled=True)
        adapter = _StaticAdapter([DiscoveredDevice("shellyplugsg3-bb", _HOST_B)])
        app = create_app(settings, {}, discovery=adapter, transport=fleet.transport())

        with TestClient(app) as client:
            assert _wait_for(lambda: _polled(client, "shellyplugsg3-bb"), timeout=4.0)


class TestShutdown:
    """Leaving the lifespan stops the loops."""

    def test_shutdown_sets_event(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        settings = _settings()
        app = create_app(settings, settings.devices, transport=fleet.transport())

        with TestClient(app) as client:
            state = _state(client)
            assert not state.shutdown_event.is_set()

        assert state.shutdown_event.is_set()

    def test_running_discovery_does_not_delay_shutdown(self, fleet: FakeFleet) -> None:
        fleet.status[_HOST_A] = _STATUS_A
        settings = _settings(discovery_enabled=True)
        app = create_app(
            settings,
            settings.devices,
            discovery=_SlowAdapter(delay_s=4.0),
            transport=fleet.transport(),
        )

        with TestClient(app):
            time.sleep(0.1)
            start = time.monotonic()

        assert time.monotonic() - start < 1.0
