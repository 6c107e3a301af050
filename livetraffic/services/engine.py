"""Wire the feeds, fusion table, delay buffer and ATC server together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable

from livetraffic.airports import AirportDatabase
from livetraffic.config import Settings, get_opensky_password, settings
from livetraffic.fsd.server import ProtocolServer
from livetraffic.fsd.session import SessionConfig
from livetraffic.geo import LatLon
from livetraffic.ingestors import (
    FlightAwareIngestor,
    FlightRadarIngestor,
    NoaaMetarIngestor,
    OpenSkyIngestor,
    PollingIngestor,
)
from livetraffic.models.aircraft import AircraftUpdate
from livetraffic.models.snapshot import FusedSnapshot
from livetraffic.models.weather import MetarObservation
from livetraffic.services.delay_buffer import DelayBuffer
from livetraffic.services.delivery import SnapshotFeed
from livetraffic.services.enricher import FlightPlanEnricher, FlightPlanProvider
from livetraffic.services.filtering import filter_snapshot
from livetraffic.services.fusion import FusionTable
from livetraffic.services.squawk import SquawkManager
from livetraffic.services.weather_cache import WeatherCache

logger = logging.getLogger("livetraffic.engine")


def load_airports(path: str) -> AirportDatabase:
    try:
        return AirportDatabase.load(path)
    except FileNotFoundError:
        logger.warning("Airport file %s not found; IATA codes will not be mapped", path)
        return AirportDatabase()


def resolve_reference(config: Settings, airports: AirportDatabase) -> LatLon:
    """Return the radar centre from explicit coordinates or the reference airport."""

    if config.reference_lat is not None and config.reference_lon is not None:
        return LatLon(lat=config.reference_lat, lon=config.reference_lon)
    if not config.reference_airport:
        raise RuntimeError("No reference airport or coordinates configured")
    airport = airports.lookup(config.reference_airport)
    if airport is None:
        raise RuntimeError(f"Unknown reference airport {config.reference_airport}")
    return airport.location


class TrafficEngine:
    """Own every long-running task of the radar feed.

    Feeds push into a bounded queue; a single consumer applies those reports
    to the fusion table. On each fusion tick the table is swept, snapshotted,
    filtered to the radar scope and pushed into the delay buffer, and a
    drainer publishes released snapshots to the sessions.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        airports: AirportDatabase | None = None,
        feeds: list[PollingIngestor] | None = None,
        flight_plans: FlightPlanProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or settings
        self.clock = clock
        self.airports = airports if airports is not None else load_airports(self.config.airports_file)
        self.center = resolve_reference(self.config, self.airports)

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.ingest_queue_size)
        self.squawks = SquawkManager(self.config.squawk_range_start, self.config.squawk_range_end)
        self.fusion = FusionTable(
            squawks=self.squawks,
            expiry_seconds=self.config.expiry_seconds,
            source_priority=self.config.source_priority,
            tie_window=self.config.fusion_tie_window_seconds,
            clock=clock,
        )
        self.delay = DelayBuffer(
            self.config.delay_seconds,
            max_span=self.config.delay_max_span_seconds,
            reorder_window=self.config.delay_reorder_window_seconds,
        )
        stations = [self.config.reference_airport] if self.config.reference_airport else []
        self.weather = WeatherCache(stations)
        self.feed = SnapshotFeed()
        self.enricher = FlightPlanEnricher(
            provider=flight_plans or FlightAwareIngestor(),
            fusion=self.fusion,
            center=self.center,
            range_nm=self.config.range_nm,
            enabled=self.config.enable_flight_plan_enrichment,
            cooldown_seconds=self.config.flight_plan_cooldown_seconds,
            lookup_timeout=self.config.flightaware_timeout + 5,
            max_concurrent=self.config.flight_plan_max_concurrent,
            clock=clock,
        )
        self.feeds = feeds if feeds is not None else self._build_feeds()
        for feed in self.feeds:
            if isinstance(feed, NoaaMetarIngestor):
                self.weather.set_listener(lambda _station, feed=feed: feed.wake())

        self.server = ProtocolServer(
            feed=self.feed,
            weather=self.weather,
            host=self.config.listen_host,
            port=self.config.listen_port,
            config=SessionConfig(
                server_name=self.config.server_name,
                handshake_timeout=self.config.handshake_timeout_seconds,
                delivery_interval=self.config.delivery_interval_seconds,
                position_keepalive=self.config.position_keepalive_seconds,
                interpolate=self.config.interpolate_positions,
                interpolate_max_age=self.config.interpolate_max_age_seconds,
                delay_seconds=self.config.delay_seconds,
                session_callsign=self.config.session_callsign,
            ),
        )
        self.latest: FusedSnapshot | None = None
        self._tasks: list[asyncio.Task] = []
        self._buffering_left: int | None = None

    def _build_feeds(self) -> list[PollingIngestor]:
        feeds: list[PollingIngestor] = []
        if self.config.enable_flightradar:
            feeds.append(
                FlightRadarIngestor(
                    center=self.center,
                    radius_nm=self.config.range_nm,
                    airports=self.airports,
                )
            )
        if self.config.enable_opensky:
            feeds.append(
                OpenSkyIngestor(
                    center=self.center,
                    radius_nm=self.config.range_nm,
                    username=self.config.opensky_username,
                    password=get_opensky_password(self.config),
                )
            )
        if self.config.enable_weather:
            feeds.append(NoaaMetarIngestor(stations=self.weather.stations))
        if not feeds:
            logger.warning("No position feeds enabled; the scope will stay empty")
        return feeds

    def ingest(self, item: Any) -> None:
        if isinstance(item, AircraftUpdate):
            self.fusion.apply_update(item)
        elif isinstance(item, MetarObservation):
            self.weather.update(item)
        else:
            logger.warning("Ignoring unexpected feed record %r", type(item).__name__)

    def fuse_once(self, now: float | None = None) -> FusedSnapshot:
        """Run one fusion tick and queue the filtered snapshot for delivery."""

        now = self.clock() if now is None else now
        self.fusion.sweep_expired(now)
        snapshot = self.fusion.snapshot(self.weather.observations())
        scoped = filter_snapshot(
            snapshot,
            self.center,
            self.config.range_nm,
            self.config.floor_ft,
            self.config.ceiling_ft,
        )
        self.delay.push(scoped)
        self.enricher.schedule(snapshot, now)
        self.latest = scoped
        return scoped

    async def drain_once(self) -> FusedSnapshot | None:
        """Publish the newest snapshot the delay buffer has released, if any."""

        released = None
        snapshot = self.delay.pop_ready()
        while snapshot is not None:
            released = snapshot
            snapshot = self.delay.pop_ready()

        if released is None:
            if self.feed.current is None and len(self.delay):
                left = int(self.delay.seconds_until_ready() or 0)
                if left != self._buffering_left:
                    logger.info("Buffering... %d seconds left", left)
                    self._buffering_left = left
            return None

        await self.feed.publish(released)
        logger.info("Updating aircraft (%s in scope)", len(released.aircraft))
        return released

    async def _consume(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                self.ingest(item)
            except Exception:  # pragma: no cover
                logger.exception("Failed to apply feed record")
            finally:
                self.queue.task_done()

    async def _fusion_loop(self) -> None:
        while True:
            try:
                self.fuse_once()
            except Exception:  # pragma: no cover
                logger.exception("Fusion tick failed")
            await asyncio.sleep(self.config.fusion_interval_seconds)

    async def _drain_loop(self) -> None:
        while True:
            await self.drain_once()
            wait = self.delay.seconds_until_ready()
            interval = self.config.drain_interval_seconds
            await asyncio.sleep(min(wait, interval) if wait is not None else interval)

    async def start(self) -> None:
        if self._tasks:
            return
        await self.server.start()
        for feed in self.feeds:
            self._tasks.append(asyncio.create_task(feed.run(self.queue), name=f"feed-{feed.name}"))
        self._tasks.append(asyncio.create_task(self._consume(), name="fusion-consumer"))
        self._tasks.append(asyncio.create_task(self._fusion_loop(), name="fusion-tick"))
        self._tasks.append(asyncio.create_task(self._drain_loop(), name="delay-drainer"))
        logger.info(
            "Radar centred on %.4f,%.4f, range %snm, delay %ss",
            self.center.lat,
            self.center.lon,
            self.config.range_nm,
            self.config.delay_seconds,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        await self.enricher.aclose()
        await self.server.stop()
        self.delay.clear()

    def status(self) -> dict[str, Any]:
        return {
            "center": {"lat": self.center.lat, "lon": self.center.lon},
            "tracked": len(self.fusion),
            "buffered_frames": len(self.delay),
            "buffered_seconds": round(self.delay.buffered_seconds(), 1),
            "last_delivered": self.delay.last_delivered,
            "queue_depth": self.queue.qsize(),
            "squawks_available": self.squawks.available,
            "sessions": len(self.server.active_sessions()),
            "feeds": {
                feed.name: {"failures": feed.failures, "dropped": feed.dropped}
                for feed in self.feeds
            },
        }


__all__ = ["TrafficEngine", "load_airports", "resolve_reference"]
