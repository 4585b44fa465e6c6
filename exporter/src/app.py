"""
FastAPI application factory for the exporter.

The lifespan owns every runtime component: it builds the shared HTTP client,
metrics store, registry, poller and scheduler once, registers the static
devices, then starts the polling loop and (when enabled) the discovery
producer and consumer as background tasks. On shutdown it sets the shared
event, cancels the discovery tasks, waits for the polling loop to finish its
current tick and closes the HTTP client.

Routes:
- ``GET {metrics_path}``: Prometheus text exposition of the store.
- ``GET /health``: latest tick summary.
- ``GET /``: liveness.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-011)
- 2026-10-19: Cancel discovery tasks on shutdown (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from exporter.src.discovery import MdnsDiscovery, consume_discoveries, run_discovery_loop
from exporter.src.health import HealthWriter
from exporter.src.poller import DevicePoller
from exporter.src.registry import DeviceRegistry
from exporter.src.scheduler import PollingScheduler
from exporter.src.store import MetricsStore, StoreCollector

if TYPE_CHECKING:
    from exporter.src.config import ExporterSettings
    from exporter.src.discovery import DiscoveryAdapter
    from exporter.src.models import DiscoveredDevice

logger = logging.getLogger(__name__)


@dataclass
class ExporterState:
    """Runtime components shared by the lifespan and the route handlers."""

    store: MetricsStore
    registry: DeviceRegistry
    scheduler: PollingScheduler
    health: HealthWriter
    metrics_registry: CollectorRegistry
    shutdown_event: asyncio.Event


def _build_state(settings: ExporterSettings, client: httpx.AsyncClient) -> ExporterState:
    store = MetricsStore()
    poller = DevicePoller(client, store, timeout=settings.request_timeout_s)
    registry = DeviceRegistry(store, poller.resolve_name)
    health = HealthWriter(settings.health_file_path)
    scheduler = PollingScheduler(
        registry=registry,
        poller=poller,
        store=store,
        interval_s=settings.poll_interval_s,
        health=health,
    )

    metrics_registry = CollectorRegistry()
    metrics_registry.register(StoreCollector(store, settings.exporter_label))

    return ExporterState(
        store=store,
        registry=registry,
        scheduler=scheduler,
        health=health,
        metrics_registry=metrics_registry,
        shutdown_event=asyncio.Event(),
    )


def create_app(
    settings: ExporterSettings,
    static_devices: dict[str, str],
    *,
    discovery: DiscoveryAdapter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the exporter application.

    Args:
        settings: Validated exporter settings.
        static_devices: ``{device_id: address}`` registered at startup.
        discovery: Discovery adapter to use when discovery is enabled.
            Defaults to :class:`MdnsDiscovery` built from *settings*.
        transport: Optional httpx transport for the device client.

    Returns:
        A FastAPI application whose lifespan runs the polling loops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        client = httpx.AsyncClient(timeout=settings.request_timeout_s, transport=transport)
        state = _build_state(settings, client)
        app.state.exporter = state

        # Name lookups run concurrently so unreachable plugs cost one
        # timeout in total, not one each.
        await asyncio.gather(
            *(
                state.registry.register(device_id, address)
                for device_id, address in static_devices.items()
            )
        )

        poll_task = asyncio.create_task(
            state.scheduler.run(state.shutdown_event),
            name="poll-loop",
        )
        discovery_tasks: list[asyncio.Task[None]] = []
        if settings.discovery_enabled:
            adapter = discovery or MdnsDiscovery(
                service_type=settings.discovery_service_type,
                name_prefix=settings.discovery_name_prefix,
                browse_s=settings.discovery_browse_s,
            )
            queue: asyncio.Queue[DiscoveredDevice] = asyncio.Queue()
            discovery_tasks.append(
                asyncio.create_task(
                    run_discovery_loop(
                        adapter,
                        queue,
                        interval_s=settings.discovery_interval_s,
                        shutdown_event=state.shutdown_event,
                    ),
                    name="discovery-loop",
                )
            )
            discovery_tasks.append(
                asyncio.create_task(
                    consume_discoveries(
                        queue,
                        state.registry,
                        shutdown_event=state.shutdown_event,
                    ),
                    name="discovery-consumer",
                )
            )

        logger.info(
            "Exporter ready: %d device(s), metrics at %s",
            len(state.registry),
            settings.metrics_path,
        )
        try:
            yield
        finally:
            logger.info("Exporter shutting down")
            state.shutdown_event.set()
            # A discovery run can take the whole browse window; the poll
            # loop finishes its current tick, which is bounded by the timeout.
            for task in discovery_tasks:
                task.cancel()
            await asyncio.gather(poll_task, *discovery_tasks, return_exceptions=True)
            await client.aclose()
            logger.info("Shutdown complete")

    app = FastAPI(
        title="Shelly Plug Exporter",
        description="Prometheus exporter for Shelly Plug S telemetry.",
        version="0.1.0",
        lifespan=lifespan,
    )

    def metrics(request: Request) -> Response:
        """Serialize the current store snapshot in Prometheus text format."""
        state: ExporterState = request.app.state.exporter
        return Response(
            content=generate_latest(state.metrics_registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    app.add_api_route(settings.metrics_path, metrics, methods=["GET"])

    @app.get("/health")
    async def health(request: Request) -> dict:
        """Return the latest tick summary."""
        state: ExporterState = request.app.state.exporter
        return {"status": "ok", "registered": len(state.registry), **state.health.status()}

    @app.get("/")
    async def root() -> dict:
        return {"status": "ok"}

    return app
