"""
Unit tests for the sonnenBatterie HTTP client.

Uses httpx.MockTransport so no network access is needed.

Tests verify:
- fetch_latest_reading reads status, battery and latestdata with Auth-Token.
- HTTP error statuses, timeouts, connection errors and bad JSON map onto
  the FetchError hierarchy.
- discover_devices skips invalid entries and raises DiscoveryError.
- Configuration commands send the expected payloads and surface
  validation and VPP-priority rejections.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest
from sonnen_edge.src.client import (
    CommandError,
    DiscoveryError,
    FetchError,
    HttpStatusError,
    MalformedPayloadError,
    SonnenClient,
    TransportError,
)
from sonnen_edge.src.time_of_use import TimeOfUseSchedule

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_HOST = "192.168.1.50"
_TOKEN = "secret-token"
_DISCOVERY_URL = "https://discovery.example.com/find"
_NOW = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)

_STATUS = {
    "Timestamp": "2024-05-01 10:00:00",
    "Production_W": 2500,
    "Consumption_W": 900,
    "GridFeedIn_W": 1100,
    "Pac_total_W": -500,
    "USOC": 64,
}
_BATTERY = {"cyclecount": 321}
_LATEST = {"FullChargeCapacity": 10120, "ic_status": {"nrbatterymodules": 4}}


def _battery_routes(overrides: dict[str, httpx.Response] | None = None) -> dict[str, httpx.Response]:
    routes = {
        "/api/v2/status": httpx.Response(200, json=_STATUS),
        "/api/v2/battery": httpx.Response(200, json=_BATTERY),
        "/api/v2/latestdata": httpx.Response(200, json=_LATEST),
    }
    routes.update(overrides or {})
    return routes


def _make_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> SonnenClient:
    return SonnenClient(
        _TOKEN,
        timeout_s=2.0,
        discovery_url=_DISCOVERY_URL,
        transport=httpx.MockTransport(handler),
        clock=lambda: _NOW,
    )


def _router(
    routes: dict[str, httpx.Response],
    seen: list[httpx.Request] | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        template = routes.get(request.url.path)
        if template is None:
            return httpx.Response(404)
        # Fresh response per request; a Response instance is single-use.
        return httpx.Response(
            template.status_code, content=template.content, headers=template.headers
        )

    return handler


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


class TestFetchLatestReading:
    """Happy path and error mapping for fetch_latest_reading."""

    @pytest.mark.asyncio
    async def test_returns_normalized_sample(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(_router(_battery_routes(), seen))

        sample = await client.fetch_latest_reading(_HOST)

        assert sample.production_w == 2500.0
        assert sample.cycle_count == 321
        assert sample.full_charge_capacity_wh == 10120.0
        assert [r.url.path for r in seen] == [
            "/api/v2/status",
            "/api/v2/battery",
            "/api/v2/latestdata",
        ]
        assert all(r.url.host == _HOST for r in seen)
        assert all(r.headers["Auth-Token"] == _TOKEN for r in seen)

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        client = _make_client(
            _router(_battery_routes({"/api/v2/battery": httpx.Response(500)}))
        )

        with pytest.raises(HttpStatusError) as exc_info:
            await client.fetch_latest_reading(_HOST)

        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value, FetchError)

    @pytest.mark.asyncio
    async def test_unauthorized_is_a_fetch_error(self) -> None:
        client = _make_client(_router(_battery_routes({"/api/v2/status": httpx.Response(401)})))

        with pytest.raises(FetchError):
            await client.fetch_latest_reading(_HOST)

    @pytest.mark.asyncio
    async def test_timeout_maps_to_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="Timeout"):
            await _make_client(handler).fetch_latest_reading(_HOST)

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(TransportError):
            await _make_client(handler).fetch_latest_reading(_HOST)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        client = _make_client(
            _router(_battery_routes({"/api/v2/status": httpx.Response(200, content=b"<html>")}))
        )

        with pytest.raises(MalformedPayloadError, match="not JSON"):
            await client.fetch_latest_reading(_HOST)

    @pytest.mark.asyncio
    async def test_missing_fields(self) -> None:
        client = _make_client(
            _router(_battery_routes({"/api/v2/status": httpx.Response(200, json={"USOC": 50})}))
        )

        with pytest.raises(MalformedPayloadError, match=_HOST):
            await client.fetch_latest_reading(_HOST)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscoverDevices:
    @pytest.mark.asyncio
    async def test_parses_devices_without_auth_header(self) -> None:
        seen: list[httpx.Request] = []
        payload = [
            {"lanip": "192.168.1.60", "ca20": False, "info": "sonnenBatterie", "device": 123456},
            {"lanip": "192.168.1.61", "device": "not-a-serial"},
            {"device": 654321},
        ]
        client = _make_client(
            _router({"/find": httpx.Response(200, json=payload)}, seen)
        )

        devices = await client.discover_devices()

        assert len(devices) == 1
        assert devices[0].lanip == "192.168.1.60"
        assert devices[0].device == 123456
        assert str(seen[0].url) == _DISCOVERY_URL
        assert "Auth-Token" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_non_list_response(self) -> None:
        client = _make_client(_router({"/find": httpx.Response(200, json={"error": "x"})}))

        with pytest.raises(DiscoveryError, match="expected a list"):
            await client.discover_devices()

    @pytest.mark.asyncio
    async def test_service_error(self) -> None:
        client = _make_client(_router({"/find": httpx.Response(503)}))

        with pytest.raises(DiscoveryError):
            await client.discover_devices()


# ---------------------------------------------------------------------------
# Configuration commands
# ---------------------------------------------------------------------------


class TestCommands:
    """Configuration writes and their error handling."""

    @pytest.mark.asyncio
    async def test_set_schedule_puts_json_string(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json={})}, seen)
        )
        schedule = TimeOfUseSchedule(
            [{"start": "22:00", "stop": "06:00", "threshold_p_max": 4000}]
        )

        await client.set_schedule(_HOST, schedule)

        request = seen[0]
        assert request.method == "PUT"
        assert json.loads(request.content) == {"EM_ToU_Schedule": schedule.to_json_string()}

    @pytest.mark.asyncio
    async def test_get_schedule(self) -> None:
        config = {"EM_ToU_Schedule": '[{"start":"01:00","stop":"05:00","threshold_p_max":3000}]'}
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json=config)})
        )

        schedule = await client.get_schedule(_HOST)

        assert str(schedule) == "01:00-05:00: 3000W"

    @pytest.mark.asyncio
    async def test_get_schedule_unset(self) -> None:
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json={"EM_ToU_Schedule": ""})})
        )

        assert len(await client.get_schedule(_HOST)) == 0

    @pytest.mark.asyncio
    async def test_clear_schedule_writes_empty_list(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json={})}, seen)
        )

        await client.clear_schedule(_HOST)

        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"EM_ToU_Schedule": "[]"}

    @pytest.mark.asyncio
    async def test_pause_schedule_uses_zero_threshold(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json={})}, seen)
        )

        await client.pause_schedule(_HOST, "17:00", "21:00")

        written = json.loads(json.loads(seen[0].content)["EM_ToU_Schedule"])
        assert written == [{"start": "17:00", "stop": "21:00", "threshold_p_max": 0}]

    @pytest.mark.asyncio
    async def test_validation_failure_surfaces_detail(self) -> None:
        body = {
            "error": "validation failed",
            "details": {"EM_ToU_Schedule": "overlapping entries"},
        }
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(400, json=body)})
        )

        with pytest.raises(CommandError) as exc_info:
            await client.set_schedule_entry(_HOST, "01:00", "05:00", 3000)

        assert exc_info.value.validation_failed is True
        assert exc_info.value.reason == "overlapping entries"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_prognosis_charging_flag(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(
            _router({"/api/v2/configurations": httpx.Response(200, json={})}, seen)
        )

        await client.set_prognosis_charging(_HOST, True)
        await client.set_prognosis_charging(_HOST, False)

        assert [json.loads(r.content) for r in seen] == [
            {"EM_Prognosis_Charging": 1},
            {"EM_Prognosis_Charging": 0},
        ]

    @pytest.mark.asyncio
    async def test_set_setpoint_posts_to_path(self) -> None:
        seen: list[httpx.Request] = []
        client = _make_client(
            _router({"/api/v2/setpoint/charge/1500": httpx.Response(201)}, seen)
        )

        await client.set_setpoint(_HOST, "charge", 1500)

        assert seen[0].method == "POST"

    @pytest.mark.asyncio
    async def test_setpoint_forbidden_means_vpp_priority(self) -> None:
        client = _make_client(
            _router({"/api/v2/setpoint/discharge/800": httpx.Response(403)})
        )

        with pytest.raises(CommandError) as exc_info:
            await client.set_setpoint(_HOST, "discharge", 800)

        assert exc_info.value.reason == "vpp_priority"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("direction", "watts"), [("sideways", 100), ("charge", -1)])
    async def test_setpoint_argument_validation(self, direction: str, watts: int) -> None:
        client = _make_client(_router({}))

        with pytest.raises(ValueError):
            await client.set_setpoint(_HOST, direction, watts)

    @pytest.mark.asyncio
    async def test_command_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(CommandError) as exc_info:
            await _make_client(handler).set_operating_mode(_HOST, "2")

        assert exc_info.value.status_code is None
