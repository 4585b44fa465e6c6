"""
Shelly Gen3 RPC poller: telemetry fetch, status parsing and name lookup.

Reads ``GET http://{address}/rpc/Switch.GetStatus?id=0`` and converts the
payload into a :class:`~exporter.src.models.TelemetrySample`. Designed to be
robust:

- Every request is bounded by a timeout (default 2 s), enforced both by httpx
  and by an outer ``asyncio.wait_for`` so a trickling device cannot hold a
  tick open.
- A device that answers but omits a field gets ``0.0`` for that field.
- A device that does not answer (timeout, connection error, non-2xx status,
  malformed body) gets NaN in all four fields.
- Errors are logged at WARNING and never propagated to the caller. There are
  no retries; the next tick is the retry.

``resolve_device_name`` reads ``/rpc/Sys.GetConfig`` once per device at
registration time to obtain a human-readable name.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-006)
- 2026-10-19: Warn about a missing name only when the device answered (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from exporter.src.models import TelemetrySample

if TYPE_CHECKING:
    from exporter.src.models import Device
    from exporter.src.store import MetricsStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_S: float = 2.0
"""Per-request timeout in seconds."""

STATUS_PATH = "/rpc/Switch.GetStatus?id=0"
CONFIG_PATH = "/rpc/Sys.GetConfig"


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
) -> dict[str, Any] | None:
    """GET *url* and return the decoded JSON object, or ``None`` on failure."""
    try:
        response = await asyncio.wait_for(
            client.get(url, timeout=timeout),
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "HTTP error %s for %s",
            exc.response.status_code,
            url,
        )
        return None
    except (httpx.TimeoutException, TimeoutError):
        logger.warning("Timeout after %.1fs for %s", timeout, url)
        return None
    except httpx.HTTPError as exc:
        logger.warning("Request error for %s: %s", url, exc)
        return None
    except ValueError as exc:
        logger.warning("Malformed JSON from %s: %s", url, exc)
        return None

    if not isinstance(data, dict):
        logger.warning("Unexpected payload type %s from %s", type(data).__name__, url)
        return None
    return data


async def fetch_status(
    client: httpx.AsyncClient,
    address: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> dict[str, Any] | None:
    """Fetch the switch status of the plug at *address*.

    Args:
        client: Shared async HTTP client.
        address: Host or IP of the plug.
        timeout: Request timeout in seconds.

    Returns:
        The decoded status object, or ``None`` if the device did not answer
        with a JSON object.
    """
    return await _get_json(client, f"http://{address}{STATUS_PATH}", timeout=timeout)


async def resolve_device_name(
    client: httpx.AsyncClient,
    address: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str | None:
    """Ask the plug at *address* for its configured name.

    Uses ``device.name`` when set, otherwise the MAC address under
    ``cfg.device.mac``.

    Returns:
        The name, or ``None`` if the device is unreachable or reports
        neither field.
    """
    data = await _get_json(client, f"http://{address}{CONFIG_PATH}", timeout=timeout)
    if data is None:
        return None

    device = data.get("device")
    if isinstance(device, dict):
        name = device.get("name")
        if isinstance(name, str) and name:
            return name

    cfg = data.get("cfg")
    if isinstance(cfg, dict) and isinstance(cfg.get("device"), dict):
        mac = cfg["device"].get("mac")
        if isinstance(mac, str) and mac:
            return mac

    logger.warning("No name reported by %s", address)
    return None


# ---------------------------------------------------------------------------
# Pure parsing
# ---------------------------------------------------------------------------


def _number(value: Any) -> float:
    """Return *value* as float if it is a real number, else ``0.0``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def parse_status(payload: dict[str, Any]) -> TelemetrySample:
    """Convert a ``Switch.GetStatus`` payload into a TelemetrySample.

    ``apower``, ``current`` and ``voltage`` are read from the top level,
    the temperature from ``temperature.tC``. Missing or non-numeric values
    become ``0.0``.
    """
    temperature = payload.get("temperature")
    temp_c = temperature.get("tC") if isinstance(temperature, dict) else None
    return TelemetrySample(
        power=_number(payload.get("apower")),
        current=_number(payload.get("current")),
        voltage=_number(payload.get("voltage")),
        temperature=_number(temp_c),
    )


# ---------------------------------------------------------------------------
# Stateful poller bound to a client and store
# ---------------------------------------------------------------------------


class DevicePoller:
    """Polls single devices and writes the outcome into the metrics store.

    Args:
        client: Shared async HTTP client.
        store: Metrics store receiving one sample per poll.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: MetricsStore,
        *,
        timeout: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._client = client
        self._store = store
        self._timeout = timeout

    async def poll(self, device: Device) -> bool:
        """Poll *device* once and store the result.

        Returns:
            ``True`` if the device answered, ``False`` if its fields were
            set to NaN.
        """
        try:
            payload = await fetch_status(self._client, device.address, timeout=self._timeout)
        except Exception:
            logger.warning(
                "Unexpected error polling %s at %s",
                device.device_id,
                device.address,
                exc_info=True,
            )
            payload = None

        if payload is None:
            self._store.set_sample(device.device_id, TelemetrySample.unavailable(), ok=False)
            logger.warning(
                "Poll failed for %s (%s), fields set to NaN",
                device.name,
                device.address,
            )
            return False

        sample = parse_status(payload)
        self._store.set_sample(device.device_id, sample, ok=True)
        logger.debug("Polled %s: %s", device.device_id, sample)
        return True

    async def resolve_name(self, device_id: str, address: str) -> str | None:
        """Registry name resolver bound to this poller's client."""
        return await resolve_device_name(self._client, address, timeout=self._timeout)
