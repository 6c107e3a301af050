"""Position ingestor for the FlightRadar24 live feed."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from livetraffic.airports import AirportDatabase
from livetraffic.config import settings
from livetraffic.geo import LatLon, bounding_box
from livetraffic.ingestors.base import FeedError, PollingIngestor
from livetraffic.models.aircraft import AircraftUpdate

logger = logging.getLogger("livetraffic.ingestors.flightradar")

SOURCE_NAME = "flightradar24"

FEED_FLAGS = {
    "faa": 1,
    "mlat": 1,
    "flarm": 1,
    "adsb": 1,
    "gnd": 1,
    "air": 1,
    "vehicles": 0,
    "estimated": 1,
    "gliders": 1,
    "stats": 0,
    "maxage": 14400,
}

# Positional layout of an aircraft entry in feed.js
(
    _HEX,
    _LAT,
    _LON,
    _TRACK,
    _ALT,
    _SPEED,
    _SQUAWK,
    _RADAR,
    _MODEL,
    _REGISTRATION,
    _TIMESTAMP,
    _ORIGIN,
    _DESTINATION,
    _FLIGHT,
    _ON_GROUND,
    _VRATE,
    _CALLSIGN,
) = range(17)


def _text(entry: list, index: int) -> str | None:
    if len(entry) <= index or entry[index] is None:
        return None
    value = str(entry[index]).strip().upper()
    return value or None


def _number(entry: list, index: int) -> float | None:
    if len(entry) <= index or entry[index] is None:
        return None
    try:
        return float(entry[index])
    except (TypeError, ValueError):
        return None


class FlightRadarIngestor(PollingIngestor):
    """Fetch aircraft inside the radar's bounding box from FlightRadar24."""

    name = SOURCE_NAME

    def __init__(
        self,
        *,
        center: LatLon,
        radius_nm: float,
        airports: AirportDatabase | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        interval: float | None = None,
        backoff_max: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            interval=interval or settings.flightradar_interval,
            backoff_max=(
                backoff_max if backoff_max is not None else settings.feed_backoff_max_seconds
            ),
        )
        self.center = center
        self.radius_nm = radius_nm
        self.airports = airports
        self.base_url = base_url or settings.flightradar_base_url
        self.timeout = timeout or settings.flightradar_timeout
        self.transport = transport

    def _params(self) -> dict[str, Any]:
        box = bounding_box(self.center, self.radius_nm)
        return {
            **FEED_FLAGS,
            "bounds": "{:.2f},{:.2f},{:.2f},{:.2f}".format(
                box.max_lat, box.min_lat, box.min_lon, box.max_lon
            ),
        }

    async def poll(self) -> list[AircraftUpdate]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(self.base_url, params=self._params())
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FeedError(f"FlightRadar24 request timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise FeedError(
                f"FlightRadar24 returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise FeedError(f"FlightRadar24 request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FeedError(f"Failed to parse FlightRadar24 JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise FeedError("FlightRadar24 payload is not an object")

        updates: list[AircraftUpdate] = []
        # Non-array values are feed metadata (full_count, version, stats)
        for value in payload.values():
            if not isinstance(value, list):
                continue
            update = self._normalize_entry(value)
            if update:
                updates.append(update)

        logger.debug("Ingested %s FlightRadar24 aircraft", len(updates))
        return updates

    def _map_airport(self, iata: str | None) -> str | None:
        if not iata:
            return None
        if self.airports is None:
            return iata
        return self.airports.icao_from_iata(iata)

    def _normalize_entry(self, entry: list) -> Optional[AircraftUpdate]:
        timestamp = _number(entry, _TIMESTAMP)
        icao = _text(entry, _HEX)
        callsign = _text(entry, _CALLSIGN)
        model = _text(entry, _MODEL)

        # The feed sometimes carries the aircraft type in the callsign slot
        if callsign and model and callsign == model:
            callsign = None

        if timestamp is None or not (icao or callsign):
            return None

        lat = _number(entry, _LAT)
        lon = _number(entry, _LON)
        on_ground = _number(entry, _ON_GROUND)

        return AircraftUpdate(
            source=SOURCE_NAME,
            timestamp=timestamp,
            icao24=icao,
            callsign=callsign,
            latitude=lat if lon is not None else None,
            longitude=lon if lat is not None else None,
            altitude_ft=_number(entry, _ALT),
            ground_speed_kt=_number(entry, _SPEED),
            heading_deg=_number(entry, _TRACK),
            vertical_rate_fpm=_number(entry, _VRATE),
            on_ground=bool(on_ground) if on_ground is not None else None,
            transponder_code=_text(entry, _SQUAWK),
            aircraft_type=model,
            registration=_text(entry, _REGISTRATION),
            origin=self._map_airport(_text(entry, _ORIGIN)),
            destination=self._map_airport(_text(entry, _DESTINATION)),
        )


__all__ = ["FlightRadarIngestor"]
