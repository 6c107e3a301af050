"""Gate and issue flight plan lookups for airline traffic."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable, Protocol

from livetraffic.geo import LatLon, distance_nm
from livetraffic.models.aircraft import AircraftRecord, FlightPlan
from livetraffic.models.snapshot import FusedSnapshot
from livetraffic.services.fusion import FusionTable

logger = logging.getLogger("livetraffic.enricher")

AIRLINE_CALLSIGN_RE = re.compile(r"^[A-Z]{3}\d[A-Z0-9]*$")


class FlightPlanProvider(Protocol):
    async def get_flight_plan(self, callsign: str) -> FlightPlan | None:
        """Return the filed plan for a callsign, or None if there is none."""


def is_airline_callsign(callsign: str | None) -> bool:
    return bool(callsign and AIRLINE_CALLSIGN_RE.match(callsign))


class FlightPlanEnricher:
    """Look up flight plans for eligible aircraft and attach them to the table.

    An aircraft is eligible when enrichment is enabled, its callsign looks
    like an airline flight (three letters then digits), it has no plan yet,
    no lookup for that callsign was attempted within ``cooldown_seconds``,
    and it is within ``range_nm`` of the reference point.
    """

    def __init__(
        self,
        *,
        provider: FlightPlanProvider,
        fusion: FusionTable,
        center: LatLon,
        range_nm: float,
        enabled: bool = True,
        cooldown_seconds: float = 600.0,
        lookup_timeout: float = 15.0,
        max_concurrent: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.fusion = fusion
        self.center = center
        self.range_nm = range_nm
        self.enabled = enabled
        self.cooldown_seconds = cooldown_seconds
        self.lookup_timeout = lookup_timeout
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._attempts: dict[str, float] = {}
        self._tasks: set[asyncio.Task] = set()
        self.lookups_issued = 0

    def is_eligible(self, record: AircraftRecord, now: float | None = None) -> bool:
        if not self.enabled:
            return False
        if record.flight_plan is not None:
            return False
        if not is_airline_callsign(record.callsign):
            return False
        now = self.clock() if now is None else now
        last_attempt = self._attempts.get(record.callsign)
        if last_attempt is not None and now - last_attempt < self.cooldown_seconds:
            return False
        if not record.has_position:
            return False
        position = LatLon(lat=record.latitude, lon=record.longitude)
        return distance_nm(self.center, position) <= self.range_nm

    def schedule(self, snapshot: FusedSnapshot, now: float | None = None) -> list[str]:
        """Start lookups for every eligible aircraft; return their callsigns."""

        if not self.enabled:
            return []
        now = self.clock() if now is None else now
        self._prune_attempts(now)
        started: list[str] = []
        for record in snapshot.aircraft:
            if not self.is_eligible(record, now):
                continue
            self._attempts[record.callsign] = now
            task = asyncio.create_task(self.lookup(record.key, record.callsign))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(record.callsign)
        return started

    def _prune_attempts(self, now: float) -> None:
        expired = [
            callsign
            for callsign, attempted_at in self._attempts.items()
            if now - attempted_at >= self.cooldown_seconds
        ]
        for callsign in expired:
            del self._attempts[callsign]

    async def lookup(self, key: str, callsign: str) -> FlightPlan | None:
        async with self._semaphore:
            logger.info("Requesting flight plan for %s", callsign)
            self.lookups_issued += 1
            try:
                plan = await asyncio.wait_for(
                    self.provider.get_flight_plan(callsign), timeout=self.lookup_timeout
                )
            except asyncio.TimeoutError:
                logger.info("Flight plan lookup for %s timed out", callsign)
                return None
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.info("Could not receive flight plan for %s because %s", callsign, exc)
                return None

        if plan is None:
            logger.info("No flight plan found for %s", callsign)
            return None
        if self.fusion.attach_flight_plan(key, plan):
            logger.info("Received flight plan for %s", callsign)
        return plan

    async def wait_idle(self) -> None:
        """Wait for in-flight lookups to finish."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()


__all__ = ["AIRLINE_CALLSIGN_RE", "FlightPlanEnricher", "FlightPlanProvider", "is_airline_callsign"]
