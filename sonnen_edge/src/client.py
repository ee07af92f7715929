"""
Async HTTP client for the sonnenBatterie local REST API (v2).

Reads the three endpoints that make up one power reading (``status``,
``battery``, ``latestdata``), queries the vendor discovery service for the
current LAN address of each battery, and writes configuration values
(time-of-use schedule, operating mode, prognosis charging, setpoints).

Every request is bounded by the configured timeout.  Read failures are
mapped onto the :class:`FetchError` hierarchy so the sampling loop can treat
transport errors, HTTP error statuses and unusable payloads identically.

Operations:
- fetch_latest_reading(address): GET status/battery/latestdata -> PowerSample.
- discover_devices(): GET the discovery service -> list of DiscoveredDevice.
- get_schedule / set_schedule / set_schedule_entry / clear_schedule /
  pause_schedule: read and write ``EM_ToU_Schedule``.
- set_operating_mode, set_prognosis_charging, set_setpoint.

CHANGELOG:
- 2026-10-19: Add configuration commands
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from typing import Any

import httpx
from pydantic import ValidationError

from sonnen_edge.src.models import DiscoveredDevice, PowerSample
from sonnen_edge.src.normalizer import normalize
from sonnen_edge.src.time_of_use import TimeOfUseEntry, TimeOfUseSchedule

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_DISCOVERY_URL: str = "https://find-my.sonnen-batterie.com/find"
"""Vendor service listing batteries registered behind the caller's public IP."""

DEFAULT_TIMEOUT_S: float = 10.0
"""Timeout per HTTP request in seconds."""

_API_PREFIX = "/api/v2"
_SETPOINT_DIRECTIONS = ("charge", "discharge")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """A power reading could not be obtained.  Always transient."""


class TransportError(FetchError):
    """Connection failure or timeout."""


class HttpStatusError(FetchError):
    """The battery answered with a non-success HTTP status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"HTTP {status_code} from {url}")
        self.url = url
        self.status_code = status_code


class MalformedPayloadError(FetchError):
    """The battery answered, but the body is not a usable reading."""


class DiscoveryError(Exception):
    """The discovery service could not be queried."""


class CommandError(Exception):
    """A configuration write was rejected or could not be delivered.

    Attributes:
        status_code: HTTP status, or ``None`` for transport failures.
        reason: Vendor-supplied detail when available.
        validation_failed: True when the battery rejected the value itself
            (HTTP 400 ``validation failed``).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        validation_failed: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.validation_failed = validation_failed


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SonnenClient:
    """Client for one or more batteries sharing an auth token.

    The battery address is passed per call so the sampling loop can switch
    to a rediscovered address without rebuilding the client.

    Args:
        auth_token: Value of the ``Auth-Token`` header (generated in the
            battery's web UI).
        timeout_s: Timeout applied to every request.
        discovery_url: Discovery service endpoint.
        port: HTTP port of the battery API.
        tz: Device time zone, attached to the battery's naive timestamps.
        transport: Optional httpx transport (tests inject
            ``httpx.MockTransport``).
        clock: Returns "now"; used when a status payload has no timestamp.

    Usage::

        client = SonnenClient(auth_token="abc", timeout_s=5)
        sample = await client.fetch_latest_reading("192.168.1.50")
    """

    def __init__(
        self,
        auth_token: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        discovery_url: str = DEFAULT_DISCOVERY_URL,
        port: int = 80,
        tz: tzinfo | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._auth_token = auth_token
        self._timeout_s = timeout_s
        self._discovery_url = discovery_url
        self._port = port
        self._tz = tz
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _base_url(self, address: str) -> str:
        return f"http://{address}:{self._port}{_API_PREFIX}"

    def _client(self, *, authenticated: bool = True) -> httpx.AsyncClient:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if authenticated:
            headers["Auth-Token"] = self._auth_token
        return httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout_s,
            transport=self._transport,
        )

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, url: str) -> Any:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Timeout requesting {url}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise HttpStatusError(url, response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"Response from {url} is not JSON") from exc

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    async def fetch_latest_reading(self, address: str) -> PowerSample:
        """Fetch and normalize one power reading from the battery at *address*.

        Raises:
            TransportError: On connection failure or timeout.
            HttpStatusError: On a non-2xx response.
            MalformedPayloadError: If a body is not JSON or lacks required
                fields.
        """
        base = self._base_url(address)
        async with self._client() as client:
            status = await self._get_json(client, f"{base}/status")
            battery = await self._get_json(client, f"{base}/battery")
            latest = await self._get_json(client, f"{base}/latestdata")

        sample = normalize(status, battery, latest, now=self._clock(), tz=self._tz)
        if sample is None:
            raise MalformedPayloadError(f"Unusable reading from {address}")
        return sample

    async def discover_devices(self) -> list[DiscoveredDevice]:
        """List batteries known to the discovery service.

        Entries that do not validate are skipped with a warning.

        Raises:
            DiscoveryError: If the service is unreachable or returns
                something other than a JSON list.
        """
        async with self._client(authenticated=False) as client:
            try:
                payload = await self._get_json(client, self._discovery_url)
            except FetchError as exc:
                raise DiscoveryError(str(exc)) from exc

        if not isinstance(payload, list):
            raise DiscoveryError(
                f"Discovery returned {type(payload).__name__}, expected a list"
            )

        devices: list[DiscoveredDevice] = []
        for entry in payload:
            try:
                devices.append(DiscoveredDevice.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping invalid discovery entry: %r", entry)
        return devices

    # ------------------------------------------------------------------
    # Configuration commands
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with self._client() as client:
            try:
                response = await client.request(method, url, json=body)
            except httpx.HTTPError as exc:
                raise CommandError(f"{method} {url} failed: {exc}") from exc

        if response.is_success:
            return response

        reason: str | None = None
        validation_failed = False
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            details = data.get("details") or {}
            error = data.get("error")
            if response.status_code == 400 and error == "validation failed":
                validation_failed = True
                reason = (details.get("EM_ToU_Schedule") if isinstance(details, dict) else None) or error
            elif isinstance(error, str):
                reason = error

        raise CommandError(
            f"{method} {url} returned HTTP {response.status_code}",
            status_code=response.status_code,
            reason=reason,
            validation_failed=validation_failed,
        )

    async def _put_configuration(self, address: str, values: dict[str, Any]) -> None:
        await self._send("PUT", f"{self._base_url(address)}/configurations", values)
        logger.info("Configuration updated on %s: %s", address, sorted(values))

    async def get_configurations(self, address: str) -> dict[str, Any]:
        async with self._client() as client:
            try:
                payload = await self._get_json(client, f"{self._base_url(address)}/configurations")
            except FetchError as exc:
                raise CommandError(str(exc), status_code=getattr(exc, "status_code", None)) from exc
        if not isinstance(payload, dict):
            raise CommandError("Configurations response is not an object")
        return payload

    async def get_schedule(self, address: str) -> TimeOfUseSchedule:
        config = await self.get_configurations(address)
        raw = config.get("EM_ToU_Schedule") or "[]"
        return TimeOfUseSchedule.from_json_string(raw)

    async def set_schedule(self, address: str, schedule: TimeOfUseSchedule) -> None:
        await self._put_configuration(address, {"EM_ToU_Schedule": schedule.to_json_string()})

    async def set_schedule_entry(
        self,
        address: str,
        start: str,
        stop: str,
        max_power: int,
    ) -> None:
        entry = TimeOfUseEntry(start=start, stop=stop, threshold_p_max=max_power)
        await self.set_schedule(address, TimeOfUseSchedule([entry]))

    async def clear_schedule(self, address: str) -> None:
        await self.set_schedule(address, TimeOfUseSchedule())

    async def pause_schedule(self, address: str, start: str, stop: str) -> None:
        """Block grid charging between *start* and *stop* (threshold 0 W)."""
        await self.set_schedule_entry(address, start, stop, 0)

    async def set_operating_mode(self, address: str, mode: str) -> None:
        await self._put_configuration(address, {"EM_OperatingMode": mode})

    async def set_prognosis_charging(self, address: str, active: bool) -> None:
        await self._put_configuration(address, {"EM_Prognosis_Charging": 1 if active else 0})

    async def set_setpoint(self, address: str, direction: str, watts: int) -> None:
        """Request a fixed charge or discharge power (manual mode only).

        Raises:
            ValueError: For an unknown direction or negative power.
            CommandError: On rejection.  HTTP 403 means a virtual power
                plant currently has priority over local setpoints.
        """
        if direction not in _SETPOINT_DIRECTIONS:
            raise ValueError(f"direction must be one of {_SETPOINT_DIRECTIONS}, got {direction!r}")
        if watts < 0:
            raise ValueError("watts must be >= 0")
        url = f"{self._base_url(address)}/setpoint/{direction}/{int(watts)}"
        try:
            await self._send("POST", url, {})
        except CommandError as exc:
            if exc.status_code == 403:
                raise CommandError(
                    "Setpoint rejected: virtual power plant has priority",
                    status_code=403,
                    reason="vpp_priority",
                ) from exc
            raise
