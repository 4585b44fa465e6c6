"""
Exporter entry point.

Loads and validates configuration (any failure is fatal before the server
binds), configures structured JSON logging, logs a config summary and runs
the FastAPI app under uvicorn. uvicorn handles SIGTERM/SIGINT; the app
lifespan then stops the polling and discovery loops.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import logging

import uvicorn

from exporter.src.app import create_app
from exporter.src.config import ExporterSettings, load_static_devices
from exporter.src.logging_config import setup_logging

logger = logging.getLogger(__name__)


def log_config_summary(settings: ExporterSettings, static_devices: dict[str, str]) -> None:
    """Log the effective configuration at startup."""
    logger.info(
        "Exporter starting with config: "
        "static_devices=%d, discovery_enabled=%s, discovery_interval_s=%s, "
        "poll_interval_s=%s, request_timeout_s=%s, listen=%s:%s, "
        "metrics_path=%s, exporter_label=%s, health_file_path=%s",
        len(static_devices),
        settings.discovery_enabled,
        settings.discovery_interval_s,
        settings.poll_interval_s,
        settings.request_timeout_s,
        settings.listen_host,
        settings.listen_port,
        settings.metrics_path,
        settings.exporter_label,
        settings.health_file_path,
    )


def main() -> None:
    """Synchronous entrypoint for the exporter."""
    setup_logging()
    settings = ExporterSettings()
    setup_logging(settings.log_level)

    static_devices = load_static_devices(settings)
    log_config_summary(settings, static_devices)

    app = create_app(settings, static_devices)
    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.listen_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
