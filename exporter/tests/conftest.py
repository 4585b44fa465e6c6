"""
Shared test fixtures for exporter tests.

Provides environment variable cleanup for ExporterSettings, a fake plug
fleet served through ``httpx.MockTransport``, and small builders for
stores.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest
from exporter.src.store import MetricsStore

# All ExporterSettings environment variable names, used for cleanup.
_ALL_EXPORTER_ENV_VARS = (
    "DEVICES",
    "DEVICES_FILE",
    "DISCOVERY_ENABLED",
    "DISCOVERY_INTERVAL_S",
    "DISCOVERY_BROWSE_S",
    "DISCOVERY_SERVICE_TYPE",
    "DISCOVERY_NAME_PREFIX",
    "POLL_INTERVAL_S",
    "REQUEST_TIMEOUT_S",
    "LISTEN_HOST",
    "LISTEN_PORT",
    "METRICS_PATH",
    "EXPORTER_LABEL",
    "HEALTH_FILE_PATH",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_exporter_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all exporter env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_EXPORTER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def store() -> MetricsStore:
    """A fresh, empty metrics store."""
    return MetricsStore()


class FakeFleet:
    """In-memory plug fleet answering Shelly RPC calls by host.

    ``status`` maps host to the ``Switch.GetStatus`` payload, ``configs``
    maps host to the ``Sys.GetConfig`` payload. Hosts listed in ``hanging``
    never answer; hosts in ``failing`` raise a connection error; any other
    unknown host answers 404.
    """

    def __init__(self) -> None:
        self.status: dict[str, Any] = {}
        self.configs: dict[str, Any] = {}
        self.hanging: set[str] = set()
        self.failing: set[str] = set()
        self.requests: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.hanging:
            await asyncio.sleep(3600)
        if host in self.failing:
            raise httpx.ConnectError("Connection refused", request=request)

        if request.url.path == "/rpc/Switch.GetStatus":
            payloads = self.status
        elif request.url.path == "/rpc/Sys.GetConfig":
            payloads = self.configs
        else:
            return httpx.Response(404)

        if host not in payloads:
            return httpx.Response(404)
        return httpx.Response(200, json=payloads[host])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, timeout: float = 0.5) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport(), timeout=timeout)


@pytest.fixture()
def fleet() -> FakeFleet:
    """An empty fake fleet; tests populate hosts as needed."""
    return FakeFleet()

