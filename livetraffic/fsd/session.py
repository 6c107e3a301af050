"""One connected ATC client and the traffic delivered to it."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
import enum
import logging
import time
from typing import Callable

from livetraffic.geo import LatLon, project_position
from livetraffic.models.aircraft import AircraftRecord
from livetraffic.models.snapshot import FusedSnapshot
from livetraffic.services.delivery import SnapshotFeed
from livetraffic.services.weather_cache import WeatherCache

from .protocol import (
    LINE_END,
    ErrorCode,
    Packet,
    ProtocolError,
    atc_validation,
    beacon_code,
    delete_pilot,
    error_message,
    flight_plan,
    initial_flight_plan,
    metar_response,
    parse_atc_login,
    parse_packet,
    pilot_position,
    plane_info,
    server_identification,
    text_message,
)

logger = logging.getLogger("livetraffic.fsd.session")


class SessionState(str, enum.Enum):
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class SessionConfig:
    """Runtime knobs for client sessions."""

    server_name: str = "VATSIM FSD V3.14"
    handshake_timeout: float = 10.0
    delivery_interval: float = 5.0
    position_keepalive: float = 15.0
    interpolate: bool = True
    interpolate_max_age: float = 20.0
    delay_seconds: float = 0.0
    session_callsign: str | None = None


@dataclass
class _SentAircraft:
    callsign: str
    position: str = ""
    position_sent_at: float = 0.0
    plan: str = ""
    squawk: str | None = None


@dataclass
class _Frame:
    positions: list[str] = field(default_factory=list)
    plans: list[str] = field(default_factory=list)
    weather: list[str] = field(default_factory=list)

    def lines(self) -> list[str]:
        return [*self.positions, *self.plans, *self.weather]


class ClientSession:
    """Drive one FSD connection from handshake to close.

    After the client logs in it receives the whole current picture at once,
    then only what changed on each delivery tick. Positions that have not
    changed are still resent every ``position_keepalive`` seconds so the
    client does not time the target out.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        feed: SnapshotFeed,
        weather: WeatherCache,
        config: SessionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.feed = feed
        self.weather = weather
        self.config = config or SessionConfig()
        self.clock = clock
        self.state = SessionState.CONNECTED
        self.callsign: str | None = None
        self.client_name: str | None = None
        self.connected_at = clock()
        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else str(peer)
        self._sent: dict[str, _SentAircraft] = {}
        self._metars_sent: dict[str, str] = {}
        self.delivered_sequence = 0
        self._delivery_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    async def run(self) -> None:
        """Serve the connection until the client leaves or an error closes it."""

        logger.info("Client connected from %s", self.peer)
        try:
            await self.send([server_identification(self.config.server_name)])
            await asyncio.wait_for(self._handshake(), timeout=self.config.handshake_timeout)
            await self._activate()
            await self._read_loop()
        except ProtocolError as exc:
            logger.info("Protocol error from %s: %s (%s)", self.peer, exc.message, exc.param)
            await self.send([error_message(self.callsign or "", exc.code, exc.message)])
        except asyncio.TimeoutError:
            logger.info("Client %s did not log in within %ss", self.peer, self.config.handshake_timeout)
        except (ConnectionError, OSError) as exc:
            logger.info("Connection to %s lost: %s", self.peer, exc)
        finally:
            await self.close()

    async def _readline(self) -> str | None:
        try:
            data = await self.reader.readline()
        except ValueError as exc:
            raise ProtocolError(ErrorCode.SYNTAX, "Line too long") from exc
        if not data:
            return None
        return data.decode("ascii", errors="replace").rstrip("\r\n")

    async def _handshake(self) -> None:
        while True:
            line = await self._readline()
            if line is None:
                raise ConnectionResetError("client closed during handshake")
            packet = parse_packet(line)
            if packet is None:
                continue
            if packet.command == "$ID":
                self.state = SessionState.AUTHENTICATING
                self.client_name = packet.field(1) or None
                continue
            if packet.command == "#AA":
                self.state = SessionState.AUTHENTICATING
                login = parse_atc_login(packet)
                self.callsign = login.callsign
                logger.info("%s logged in as %s (%s)", self.peer, login.callsign, login.real_name)
                return
            raise ProtocolError(ErrorCode.SYNTAX, "Login required", packet.command)

    async def _activate(self) -> None:
        self.state = SessionState.ACTIVE
        await self.send([text_message(self.callsign, f"Connected to {self.config.server_name}")])
        await self.deliver()
        self._delivery_task = asyncio.create_task(self._delivery_loop())

    async def _delivery_loop(self) -> None:
        try:
            while self.state is SessionState.ACTIVE:
                await asyncio.sleep(self.config.delivery_interval)
                await self.deliver()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Delivery to %s failed", self.callsign or self.peer)
            await self.close()

    async def _read_loop(self) -> None:
        while self.state is SessionState.ACTIVE:
            line = await self._readline()
            if line is None:
                logger.info("%s disconnected", self.callsign)
                return
            packet = parse_packet(line)
            if packet is None:
                continue
            if packet.command == "#DA":
                logger.info("%s signed off", self.callsign)
                return
            await self.handle(packet)

    async def handle(self, packet: Packet) -> None:
        """Answer a request from an active client. Unknown packets are ignored."""

        if packet.command == "$AX" and packet.field(0).upper() == "METAR":
            await self._answer_metar(packet.field(1))
        elif packet.command == "$CQ" and packet.field(0).upper() == "FP":
            await self._answer_flight_plan(packet.field(1))
        elif packet.command == "$CQ" and packet.field(0).upper() == "ATC":
            await self.send([atc_validation(self.callsign, packet.field(1) or None)])
        elif packet.command == "#SB" and packet.field(0).upper() == "PIR":
            await self._answer_plane_info(packet.destination)
        else:
            logger.debug("Ignoring %s from %s", packet.command, self.callsign)

    async def _answer_metar(self, station: str) -> None:
        station = station.strip().upper()
        if not station:
            return
        observation = self.weather.get(station)
        if observation is None:
            # Delivered on a later tick once the station has been fetched.
            self.weather.request(station)
            return
        self._metars_sent[station] = observation.raw
        await self.send([metar_response(self.callsign, observation.raw)])

    async def _answer_flight_plan(self, callsign: str) -> None:
        record = self._find(callsign)
        if record is None:
            return
        await self.send([self._plan_line(record)])

    async def _answer_plane_info(self, callsign: str) -> None:
        record = self._find(callsign)
        if record is None:
            return
        await self.send([plane_info(record.callsign, self.callsign, record)])

    def _find(self, callsign: str) -> AircraftRecord | None:
        snapshot = self.feed.current
        if snapshot is None or not callsign:
            return None
        return snapshot.find_callsign(callsign)

    def _plan_line(self, record: AircraftRecord) -> str:
        if record.flight_plan is not None:
            return flight_plan(record, record.flight_plan)
        return initial_flight_plan(record)

    def position_for(self, record: AircraftRecord, now: float) -> tuple[float, float]:
        """Return the position to report, dead-reckoned for airborne aircraft."""

        lat, lon = record.latitude, record.longitude
        if (
            not self.config.interpolate
            or record.on_ground
            or record.position_timestamp is None
            or record.heading_deg is None
            or not record.ground_speed_kt
        ):
            return lat, lon
        elapsed = now - self.config.delay_seconds - record.position_timestamp
        if elapsed <= 0 or elapsed > self.config.interpolate_max_age:
            return lat, lon
        projected = project_position(
            LatLon(lat=lat, lon=lon), record.heading_deg, record.ground_speed_kt, elapsed
        )
        return projected.lat, projected.lon

    def render(self, snapshot: FusedSnapshot | None, now: float) -> list[str]:
        """Build the lines this client is missing and remember them as sent."""

        frame = _Frame()
        atc = self.config.session_callsign or self.callsign
        live: set[str] = set()

        for record in snapshot.aircraft if snapshot is not None else ():
            if not record.callsign or not record.has_position:
                continue
            live.add(record.key)
            sent = self._sent.get(record.key)
            if sent is not None and sent.callsign != record.callsign:
                frame.positions.append(delete_pilot(sent.callsign))
                sent = None
            if sent is None:
                sent = self._sent[record.key] = _SentAircraft(callsign=record.callsign)

            lat, lon = self.position_for(record, now)
            position = pilot_position(record, lat, lon, record.squawk)
            if (
                position != sent.position
                or now - sent.position_sent_at >= self.config.position_keepalive
            ):
                frame.positions.append(position)
                sent.position = position
                sent.position_sent_at = now

            plan = self._plan_line(record)
            if plan != sent.plan:
                frame.plans.append(plan)
                sent.plan = plan
            if record.squawk and record.squawk != sent.squawk:
                frame.plans.append(beacon_code(atc, record.callsign, record.squawk))
                sent.squawk = record.squawk

        for key in [key for key in self._sent if key not in live]:
            frame.positions.append(delete_pilot(self._sent.pop(key).callsign))

        for observation in self.weather.observations():
            if self._metars_sent.get(observation.station) != observation.raw:
                frame.weather.append(metar_response(self.callsign, observation.raw))
                self._metars_sent[observation.station] = observation.raw

        return frame.lines()

    async def deliver(self) -> int:
        """Send whatever changed since the previous delivery."""

        if self.state is not SessionState.ACTIVE:
            return 0
        self.delivered_sequence = self.feed.sequence
        lines = self.render(self.feed.current, self.clock())
        if lines:
            await self.send(lines)
        return len(lines)

    async def send(self, lines: list[str]) -> bool:
        if self.state is SessionState.CLOSED:
            return False
        payload = "".join(line + LINE_END for line in lines).encode("ascii", errors="replace")
        try:
            async with self._write_lock:
                self.writer.write(payload)
                await self.writer.drain()
        except (ConnectionError, OSError) as exc:
            logger.info("Write to %s failed: %s", self.callsign or self.peer, exc)
            await self.close()
            return False
        return True

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        task = self._delivery_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.writer.close()
        with contextlib.suppress(Exception):  # pragma: no cover - best effort close
            await self.writer.wait_closed()
        logger.info("Session %s closed", self.callsign or self.peer)

    def describe(self) -> dict[str, object]:
        return {
            "callsign": self.callsign,
            "peer": self.peer,
            "state": self.state.value,
            "connected_at": self.connected_at,
            "aircraft": len(self._sent),
            "delivered_sequence": self.delivered_sequence,
        }


__all__ = ["ClientSession", "SessionConfig", "SessionState"]
