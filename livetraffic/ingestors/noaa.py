"""METAR ingestion from NOAA's Aviation Weather Center data API."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging
import re
import time
from typing import Callable, Iterable

import httpx

from livetraffic.config import settings
from livetraffic.ingestors.base import FeedError, PollingIngestor
from livetraffic.models.weather import MetarObservation

logger = logging.getLogger("livetraffic.ingestors.noaa")

_STATION_RE = re.compile(r"^[A-Z0-9]{4}$")
_TIME_RE = re.compile(r"^(\d{2})(\d{2})(\d{2})Z$")


def _observation_time(token: str, now: datetime) -> datetime | None:
    match = _TIME_RE.match(token)
    if not match:
        return None
    day, hour, minute = (int(group) for group in match.groups())
    candidate_month = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # A day ahead of today belongs to the previous month
    if day > now.day:
        candidate_month = candidate_month.replace(day=1) - timedelta(days=1)
    try:
        return candidate_month.replace(day=day, hour=hour, minute=minute)
    except ValueError:
        return None


def parse_metar_line(line: str, *, fetched_at: float | None = None) -> MetarObservation | None:
    """Parse one raw METAR line, skipping a leading METAR/SPECI report type."""

    tokens = line.split()
    if tokens and tokens[0] in {"METAR", "SPECI"}:
        tokens = tokens[1:]
    if len(tokens) < 2 or not _STATION_RE.match(tokens[0]):
        return None

    fetched = fetched_at if fetched_at is not None else time.time()
    now = datetime.fromtimestamp(fetched, tz=timezone.utc)
    return MetarObservation(
        station=tokens[0],
        raw=" ".join(tokens),
        observed_at=_observation_time(tokens[1], now),
        fetched_at=fetched,
    )


class NoaaMetarIngestor(PollingIngestor):
    """Poll the latest METAR for every station the weather cache tracks."""

    name = "noaa"

    def __init__(
        self,
        *,
        stations: Callable[[], Iterable[str]],
        base_url: str | None = None,
        timeout: float | None = None,
        interval: float | None = None,
        backoff_max: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            interval=interval or settings.weather_interval_seconds,
            backoff_max=(
                backoff_max if backoff_max is not None else settings.feed_backoff_max_seconds
            ),
        )
        self.stations = stations
        self.base_url = base_url or settings.noaa_base_url
        self.timeout = timeout or settings.weather_timeout
        self.transport = transport
        self._wakeup = asyncio.Event()

    def wake(self) -> None:
        """Poll again now instead of waiting for the interval."""

        self._wakeup.set()

    async def wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    async def poll(self) -> list[MetarObservation]:
        stations = sorted({station.upper() for station in self.stations() if station})
        if not stations:
            return []

        params = {"ids": ",".join(stations), "format": "raw"}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(self.base_url, params=params)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FeedError(f"Weather request timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise FeedError(
                f"Weather service returned error: status={exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise FeedError(f"Weather request failed: {exc}") from exc

        fetched_at = time.time()
        observations: list[MetarObservation] = []
        for line in response.text.splitlines():
            observation = parse_metar_line(line.strip(), fetched_at=fetched_at)
            if observation and observation.station in stations:
                observations.append(observation)

        logger.debug("Fetched %s METARs for %s", len(observations), ",".join(stations))
        return observations


__all__ = ["NoaaMetarIngestor", "parse_metar_line"]
