"""Flight plan lookups scraped from FlightAware's live flight pages."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Optional

import httpx

from livetraffic.config import settings
from livetraffic.ingestors.base import FeedError
from livetraffic.models.aircraft import FlightPlan

logger = logging.getLogger("livetraffic.ingestors.flightaware")

_BOOTSTRAP_RE = re.compile(r"var trackpollBootstrap = (\{.+\});")

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0"


def _scheduled(times: Any) -> datetime | None:
    if not isinstance(times, dict):
        return None
    value = times.get("scheduled")
    if not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_flight_plan(callsign: str, data: Any) -> Optional[FlightPlan]:
    """Build a FlightPlan from the ``trackpollBootstrap`` document.

    Returns ``None`` when the first flight has no origin, which in practice
    means the page carries no usable plan.
    """

    if not isinstance(data, dict):
        return None
    flights = data.get("flights")
    if not isinstance(flights, dict) or not flights:
        return None
    flight = next(iter(flights.values()))
    if not isinstance(flight, dict):
        return None

    origin = flight.get("origin")
    if not isinstance(origin, dict) or not origin.get("icao"):
        return None
    destination = flight.get("destination") if isinstance(flight.get("destination"), dict) else {}
    aircraft = flight.get("aircraft") if isinstance(flight.get("aircraft"), dict) else {}
    filed = flight.get("flightPlan") if isinstance(flight.get("flightPlan"), dict) else {}

    altitude = _as_int(filed.get("altitude"))
    # Filed altitudes under 1000 are flight levels
    if altitude < 1000:
        altitude *= 100

    return FlightPlan(
        callsign=callsign,
        origin=origin.get("icao") or "",
        destination=destination.get("icao") or "",
        route=filed.get("route") or "",
        aircraft_type=aircraft.get("type") or "",
        cruise_speed_kt=_as_int(filed.get("speed")),
        cruise_altitude_ft=altitude,
        scheduled_departure=_scheduled(flight.get("gateDepartureTimes")),
        scheduled_arrival=_scheduled(flight.get("gateArrivalTimes")),
        departure_gate=origin.get("gate"),
        arrival_gate=destination.get("gate"),
    )


class FlightAwareIngestor:
    """Fetch the filed flight plan for a callsign on demand."""

    name = "flightaware"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.flightaware_base_url
        self.timeout = timeout or settings.flightaware_timeout
        self.transport = transport

    async def get_flight_plan(self, callsign: str) -> FlightPlan | None:
        url = self.base_url.rstrip("/") + "/" + callsign
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FeedError(f"FlightAware request timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise FeedError(f"FlightAware returned HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            raise FeedError(f"FlightAware request failed: {exc}") from exc

        match = _BOOTSTRAP_RE.search(response.text)
        if not match:
            logger.debug("No trackpoll data on FlightAware page for %s", callsign)
            return None

        try:
            data = json.loads(match.group(1))
        except ValueError as exc:
            raise FeedError(f"Malformed FlightAware bootstrap JSON: {exc}") from exc

        return parse_flight_plan(callsign, data)


__all__ = ["FlightAwareIngestor", "parse_flight_plan"]
