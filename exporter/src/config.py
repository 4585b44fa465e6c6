"""
Exporter configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Static devices come from ``DEVICES`` (a JSON object mapping device id to
address) and/or a JSON file named by ``DEVICES_FILE``. Any configuration
error is fatal at startup: the exporter must not serve an empty registry
that silently exports nothing.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)
- 2026-10-19: Validate and strip DEVICES addresses (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when the static device configuration cannot be loaded."""


class ExporterSettings(BaseSettings):
    """Shelly Plug exporter configuration.

    Attributes:
        devices: Static devices as ``{device_id: address}``.
        devices_file: Optional JSON file holding the same mapping.
        discovery_enabled: Browse mDNS for plugs in addition to the static
            devices.
        discovery_interval_s: Seconds between mDNS discovery runs.
        discovery_browse_s: Seconds each discovery run listens for answers.
        discovery_service_type: mDNS service type to browse.
        discovery_name_prefix: Only instances whose name starts with this
            prefix are admitted.
        poll_interval_s: Seconds between polling ticks.
        request_timeout_s: Per-device HTTP timeout in seconds.
        listen_host: Bind address of the scrape endpoint.
        listen_port: Port of the scrape endpoint.
        metrics_path: URL path of the scrape endpoint.
        exporter_label: Value of the ``exporter`` label on every metric.
        health_file_path: Optional JSON liveness file, rewritten every tick.
        log_level: Root log level name.
    """

    devices: dict[str, str] = {}
    devices_file: str | None = None
    discovery_enabled: bool = False
    discovery_interval_s: int = 60
    discovery_browse_s: float = 10.0
    discovery_service_type: str = "_shelly._tcp.local."
    discovery_name_prefix: str = "shellyplugsg3-"
    poll_interval_s: int = 5
    request_timeout_s: float = 2.0
    listen_host: str = "0.0.0.0"
    listen_port: int = 9769
    metrics_path: str = "/metrics"
    exporter_label: str = "shelly-plug-s"
    health_file_path: str | None = None
    log_level: str = "INFO"

    @field_validator("devices")
    @classmethod
    def device_addresses_must_be_set(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate and strip each static device address."""
        devices: dict[str, str] = {}
        for device_id, address in v.items():
            if not address.strip():
                raise ValueError(
                    f"DEVICES: address for '{device_id}' must be a non-empty string"
                )
            devices[device_id] = address.strip()
        return devices

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """Validate poll interval is at least 1 second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("discovery_interval_s")
    @classmethod
    def discovery_interval_must_be_reasonable(cls, v: int) -> int:
        """Validate discovery runs no more often than every 10 seconds."""
        if v < 10:
            raise ValueError("DISCOVERY_INTERVAL_S must be >= 10")
        return v

    @field_validator("request_timeout_s", "discovery_browse_s")
    @classmethod
    def durations_must_be_positive(cls, v: float) -> float:
        """Validate timeouts and browse windows are positive."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("listen_port")
    @classmethod
    def listen_port_must_be_valid(cls, v: int) -> int:
        """Validate TCP port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("LISTEN_PORT must be between 1 and 65535")
        return v

    @field_validator("metrics_path")
    @classmethod
    def metrics_path_must_be_absolute(cls, v: str) -> str:
        """Validate the scrape path starts with a slash."""
        if not v.startswith("/"):
            raise ValueError("METRICS_PATH must start with '/'")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL '{v}' is not a known level")
        return level

    @model_validator(mode="after")
    def _check_timings_and_sources(self) -> ExporterSettings:
        """Cross-field checks: timings fit the intervals, devices exist."""
        if self.request_timeout_s >= self.poll_interval_s:
            raise ValueError("REQUEST_TIMEOUT_S must be < POLL_INTERVAL_S")
        if self.discovery_browse_s >= self.discovery_interval_s:
            raise ValueError("DISCOVERY_BROWSE_S must be < DISCOVERY_INTERVAL_S")
        if not self.devices and not self.devices_file and not self.discovery_enabled:
            raise ValueError(
                "No devices configured: set DEVICES, DEVICES_FILE or "
                "DISCOVERY_ENABLED=true"
            )
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def _read_devices_file(path: str) -> dict[str, str]:
    """Read a ``{device_id: address}`` JSON object from *path*.

    Raises:
        ConfigError: If the file is missing, unreadable, not JSON, or not a
            flat object of non-empty strings.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read DEVICES_FILE '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"DEVICES_FILE '{path}' is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"DEVICES_FILE '{path}' must contain a JSON object")

    devices: dict[str, str] = {}
    for device_id, address in data.items():
        if not isinstance(address, str) or not address.strip():
            raise ConfigError(
                f"DEVICES_FILE '{path}': address for '{device_id}' must be a "
                "non-empty string"
            )
        devices[device_id] = address.strip()
    return devices


def load_static_devices(settings: ExporterSettings) -> dict[str, str]:
    """Return the merged static device mapping.

    Entries from ``DEVICES_FILE`` are loaded first; ``DEVICES`` entries
    override them for the same device id.

    Args:
        settings: Validated exporter settings.

    Returns:
        Ordered ``{device_id: address}`` mapping.

    Raises:
        ConfigError: If ``DEVICES_FILE`` cannot be loaded, or if the
            mapping is empty while discovery is disabled.
    """
    devices: dict[str, str] = {}
    if settings.devices_file:
        devices.update(_read_devices_file(settings.devices_file))
    devices.update(settings.devices)

    if not devices and not settings.discovery_enabled:
        raise ConfigError("Static device configuration is empty and discovery is disabled")

    logger.info("Loaded %d static device(s)", len(devices))
    return devices
