import asyncio

import httpx
import pytest

from livetraffic.geo import LatLon
from livetraffic.ingestors.base import FeedError
from livetraffic.ingestors.opensky import OpenSkyIngestor

CENTER = LatLon(lat=10.0, lon=20.0)


def _ingestor(handler, **kwargs) -> OpenSkyIngestor:
    return OpenSkyIngestor(
        center=CENTER,
        radius_nm=50.0,
        base_url="https://example.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.anyio
async def test_opensky_ingestor_parses_states():
    payload = {
        "time": 1714765200,
        "states": [
            [
                "abc123",  # icao24
                "TEST123 ",  # callsign with trailing space
                "USA",
                1714765198,  # time_position
                1714765200,  # last_contact
                20.0,  # longitude
                10.0,  # latitude
                3657.6,  # baro_altitude meters
                False,  # on_ground
                164.6,  # velocity m/s
                90.0,  # true_track
                2.0,  # vertical_rate m/s
                None,  # sensors
                3700.0,  # geo_altitude meters
                "7000",  # squawk
                False,  # spi
                0,  # position_source
            ]
        ],
    }

    def handler(request: httpx.Request):
        assert "lamin" in request.url.params
        assert float(request.url.params["lamin"]) < 10.0 < float(request.url.params["lamax"])
        return httpx.Response(200, json=payload)

    updates = await _ingestor(handler).poll()

    assert len(updates) == 1
    update = updates[0]
    assert update.source == "opensky"
    assert update.callsign == "TEST123"
    assert update.icao24 == "ABC123"
    assert update.identity_key == "ABC123"
    assert update.latitude == 10.0
    assert update.longitude == 20.0
    assert update.altitude_ft == pytest.approx(12000.0, rel=1e-3)
    assert update.ground_speed_kt == pytest.approx(319.96, rel=1e-3)
    assert update.heading_deg == 90
    assert update.vertical_rate_fpm == pytest.approx(393.7008, rel=1e-3)
    assert update.on_ground is False
    assert update.transponder_code == "7000"
    assert update.timestamp == 1714765198


@pytest.mark.anyio
async def test_opensky_ingestor_uses_last_contact_when_position_time_missing():
    payload = {
        "time": 1714765200,
        "states": [["def456", None, "USA", None, 1714765150, 20.1, 10.1, None, True]],
    }

    def handler(request: httpx.Request):
        return httpx.Response(200, json=payload)

    updates = await _ingestor(handler).poll()

    assert updates[0].timestamp == 1714765150
    assert updates[0].callsign is None
    assert updates[0].altitude_ft is None
    assert updates[0].on_ground is True


@pytest.mark.anyio
async def test_opensky_ingestor_sends_basic_auth():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"time": 1, "states": None})

    updates = await _ingestor(handler, username="user", password="secret").poll()

    assert updates == []
    assert seen["auth"].startswith("Basic ")


@pytest.mark.anyio
async def test_opensky_ingestor_handles_rate_limit():
    def handler(request: httpx.Request):
        return httpx.Response(429, text="rate limited")

    with pytest.raises(FeedError):
        await _ingestor(handler).poll()


@pytest.mark.anyio
async def test_opensky_ingestor_handles_error_response():
    def handler(request: httpx.Request):
        return httpx.Response(503, text="unavailable")

    ingestor = _ingestor(handler)

    queue: asyncio.Queue = asyncio.Queue()
    accepted = await ingestor.run_once(queue)

    assert accepted == 0
    assert ingestor.failures == 1
    assert queue.empty()


@pytest.mark.anyio
async def test_opensky_ingestor_rejects_non_json():
    def handler(request: httpx.Request):
        return httpx.Response(200, text="<html>")

    with pytest.raises(FeedError):
        await _ingestor(handler).poll()
