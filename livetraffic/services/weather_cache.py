"""Per-station cache of the latest METAR observations."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from livetraffic.models.weather import MetarObservation

logger = logging.getLogger("livetraffic.weather")


class WeatherCache:
    """Latest METAR per station, plus the set of stations worth polling."""

    def __init__(
        self,
        stations: Iterable[str] = (),
        on_request: Callable[[str], None] | None = None,
    ) -> None:
        self._stations: set[str] = {station.upper() for station in stations if station}
        self._latest: dict[str, MetarObservation] = {}
        self._on_request = on_request
        self._lock = threading.Lock()

    def set_listener(self, on_request: Callable[[str], None] | None) -> None:
        self._on_request = on_request

    def request(self, station: str) -> bool:
        """Start tracking a station; return True if it was new."""

        station = station.strip().upper()
        if not station:
            return False
        with self._lock:
            if station in self._stations:
                return False
            self._stations.add(station)
        logger.info("Getting weather for %s", station)
        if self._on_request is not None:
            self._on_request(station)
        return True

    def update(self, observation: MetarObservation) -> bool:
        """Store an observation; return True if the report text changed."""

        with self._lock:
            current = self._latest.get(observation.station)
            self._latest[observation.station] = observation
            self._stations.add(observation.station)
        changed = current is None or current.raw != observation.raw
        if changed:
            logger.info("Got metar %s", observation.raw)
        return changed

    def get(self, station: str) -> MetarObservation | None:
        with self._lock:
            return self._latest.get(station.strip().upper())

    def stations(self) -> list[str]:
        with self._lock:
            return sorted(self._stations)

    def observations(self) -> tuple[MetarObservation, ...]:
        with self._lock:
            return tuple(self._latest[station] for station in sorted(self._latest))


__all__ = ["WeatherCache"]
