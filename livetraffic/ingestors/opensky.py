"""Position ingestor for nearby air traffic using the OpenSky REST API."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

from livetraffic.config import settings
from livetraffic.geo import LatLon, bounding_box
from livetraffic.ingestors.base import FeedError, PollingIngestor
from livetraffic.models.aircraft import AircraftUpdate

logger = logging.getLogger("livetraffic.ingestors.opensky")

SOURCE_NAME = "opensky"


def _m_to_feet(value_m: Any) -> float | None:
    if value_m is None:
        return None
    try:
        return float(value_m) * 3.28084
    except (TypeError, ValueError):  # pragma: no cover
        return None


def _ms_to_knots(value_ms: Any) -> float | None:
    if value_ms is None:
        return None
    try:
        return float(value_ms) * 1.94384
    except (TypeError, ValueError):  # pragma: no cover
        return None


def _ms_to_fpm(value_ms: Any) -> float | None:
    if value_ms is None:
        return None
    try:
        return float(value_ms) * 196.850394
    except (TypeError, ValueError):  # pragma: no cover
        return None


class OpenSkyIngestor(PollingIngestor):
    """Fetch state vectors inside the radar's bounding box from OpenSky."""

    name = SOURCE_NAME

    def __init__(
        self,
        *,
        center: LatLon,
        radius_nm: float,
        base_url: str | None = None,
        timeout: float | None = None,
        interval: float | None = None,
        backoff_max: float | None = None,
        username: str | None = None,
        password: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            interval=interval or settings.opensky_interval,
            backoff_max=(
                backoff_max if backoff_max is not None else settings.feed_backoff_max_seconds
            ),
        )
        self.center = center
        self.radius_nm = radius_nm
        self.base_url = base_url or settings.opensky_base_url
        self.timeout = timeout or settings.opensky_timeout
        self.auth = httpx.BasicAuth(username, password) if username and password else None
        self.transport = transport

    async def poll(self) -> list[AircraftUpdate]:
        box = bounding_box(self.center, self.radius_nm)
        params = {
            "lamin": box.min_lat,
            "lomin": box.min_lon,
            "lamax": box.max_lat,
            "lomax": box.max_lon,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, auth=self.auth
            ) as client:
                response = await client.get(self.base_url, params=params)
        except httpx.TimeoutException as exc:
            raise FeedError(f"OpenSky request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise FeedError(f"OpenSky request failed: {exc}") from exc

        if response.status_code == 429:
            raise FeedError("OpenSky rate limit encountered")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FeedError(f"OpenSky returned HTTP {exc.response.status_code}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FeedError(f"Failed to parse OpenSky JSON response: {exc}") from exc

        if not isinstance(payload, dict):
            raise FeedError("OpenSky payload is not an object")
        raw_states = payload.get("states") or []
        fallback_ts = payload.get("time") or time.time()

        updates: list[AircraftUpdate] = []
        for entry in raw_states:
            update = self._normalize_state(entry, fallback_ts)
            if update:
                updates.append(update)

        logger.debug("Ingested %s OpenSky state vectors", len(updates))
        return updates

    def _normalize_state(self, entry: Any, fallback_ts: float) -> Optional[AircraftUpdate]:
        if not isinstance(entry, (list, tuple)) or len(entry) < 7:
            return None

        icao = entry[0].upper() if entry[0] else None
        callsign = entry[1].strip() if entry[1] else None
        if not icao and not callsign:
            return None

        lon = entry[5]
        lat = entry[6]
        baro_altitude_m = entry[7] if len(entry) > 7 else None
        altitude_m = baro_altitude_m
        if altitude_m is None and len(entry) > 13:
            altitude_m = entry[13]
        timestamp = entry[3] if entry[3] is not None else (entry[4] if len(entry) > 4 else None)

        return AircraftUpdate(
            source=SOURCE_NAME,
            timestamp=float(timestamp if timestamp is not None else fallback_ts),
            icao24=icao,
            callsign=callsign or None,
            latitude=float(lat) if lat is not None and lon is not None else None,
            longitude=float(lon) if lat is not None and lon is not None else None,
            altitude_ft=_m_to_feet(altitude_m),
            on_ground=bool(entry[8]) if len(entry) > 8 and entry[8] is not None else None,
            ground_speed_kt=_ms_to_knots(entry[9] if len(entry) > 9 else None),
            heading_deg=entry[10] if len(entry) > 10 else None,
            vertical_rate_fpm=_ms_to_fpm(entry[11] if len(entry) > 11 else None),
            transponder_code=entry[14] if len(entry) > 14 and entry[14] else None,
        )


__all__ = ["OpenSkyIngestor"]
