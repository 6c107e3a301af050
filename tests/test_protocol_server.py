import asyncio

import pytest

from livetraffic.fsd.server import ProtocolServer
from livetraffic.fsd.session import ClientSession, SessionConfig, SessionState
from livetraffic.models import AircraftUpdate, MetarObservation
from livetraffic.services.delivery import SnapshotFeed
from livetraffic.services.fusion import FusionTable
from livetraffic.services.squawk import SquawkManager
from livetraffic.services.weather_cache import WeatherCache

LOGIN = "#AABOS_APP:SERVER:Jane Doe:1234567:secret:5:100\r\n"
KBOS_METAR = "KBOS 031954Z 09010KT 10SM FEW250 18/06 A3012"
KPVD_METAR = "KPVD 031951Z 18008KT 10SM CLR 20/05 A3010"


def _table() -> FusionTable:
    table = FusionTable(squawks=SquawkManager())
    table.apply_update(
        AircraftUpdate(
            source="flightradar24",
            timestamp=100,
            icao24="A1B2C3",
            callsign="JBU1",
            latitude=42.30,
            longitude=-71.00,
            altitude_ft=5000,
            ground_speed_kt=250,
            heading_deg=90,
            aircraft_type="A320",
            origin="KBOS",
            destination="KJFK",
        )
    )
    table.apply_update(
        AircraftUpdate(
            source="opensky",
            timestamp=101,
            icao24="D4E5F6",
            callsign="N123AB",
            latitude=42.40,
            longitude=-71.10,
            altitude_ft=2500,
            ground_speed_kt=110,
            heading_deg=180,
            aircraft_type="C172",
        )
    )
    return table


def _weather() -> WeatherCache:
    weather = WeatherCache(["KBOS"])
    weather.update(MetarObservation(station="KBOS", raw=KBOS_METAR, fetched_at=1.0))
    return weather


async def _serve(feed: SnapshotFeed, weather: WeatherCache, **overrides) -> ProtocolServer:
    config = SessionConfig(delivery_interval=0.05, interpolate=False, handshake_timeout=2.0)
    for name, value in overrides.items():
        setattr(config, name, value)
    server = ProtocolServer(feed=feed, weather=weather, host="127.0.0.1", port=0, config=config)
    await server.start()
    return server


async def _read_until(reader: asyncio.StreamReader, prefix: str) -> list[str]:
    lines = []
    while True:
        data = await asyncio.wait_for(reader.readline(), timeout=2)
        if not data:
            raise AssertionError(f"connection closed before {prefix!r}; got {lines}")
        line = data.decode().rstrip("\r\n")
        lines.append(line)
        if line.startswith(prefix):
            return lines


async def _login(server: ProtocolServer):
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    banner = await _read_until(reader, "$DI")
    assert banner == ["$DISERVER:CLIENT:VATSIM FSD V3.14:"]
    writer.write(b"$IDBOS_APP:SERVER:88e4:EuroScope 3.2:3:2:1234567:12345\r\n")
    writer.write(LOGIN.encode())
    await writer.drain()
    return reader, writer


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except ConnectionError:
        pass


@pytest.mark.anyio
async def test_client_joining_mid_stream_receives_full_picture():
    feed = SnapshotFeed()
    await feed.publish(_table().snapshot())
    server = await _serve(feed, _weather())
    try:
        reader, writer = await _login(server)
        lines = await _read_until(reader, "$AR")

        assert lines[0] == "#TMSERVER:BOS_APP:Connected to VATSIM FSD V3.14"
        assert lines[1:3] == [
            "@N:JBU1:0201:1:42.30000:-71.00000:5000:250:1024:0",
            "@N:N123AB:0202:1:42.40000:-71.10000:2500:110:2048:0",
        ]
        assert lines[3] == "$FPJBU1::I:A320:0:KBOS:0:0:0:KJFK:0:0:0:0::/v/ Hex A1B2C3:"
        assert lines[4] == "#PCSERVER:BOS_APP:CCP:BC:JBU1:0201"
        assert lines[5].startswith("$FPN123AB::V:C172:")
        assert lines[6] == "#PCSERVER:BOS_APP:CCP:BC:N123AB:0202"
        assert lines[7] == f"$ARSERVER:BOS_APP:METAR:{KBOS_METAR}"

        [session] = server.active_sessions()
        assert session.state is SessionState.ACTIVE
        assert session.callsign == "BOS_APP"
        await _close(writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_departed_aircraft_are_deleted_on_next_tick():
    feed = SnapshotFeed()
    snapshot = _table().snapshot()
    await feed.publish(snapshot)
    server = await _serve(feed, _weather())
    try:
        reader, writer = await _login(server)
        await _read_until(reader, "$AR")

        remaining = tuple(record for record in snapshot.aircraft if record.key != "A1B2C3")
        await feed.publish(snapshot.model_copy(update={"aircraft": remaining}))

        lines = await _read_until(reader, "#DP")
        assert "#DPJBU1" in lines
        assert not any(line.startswith("#DPN123AB") for line in lines)
        await _close(writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_requests_are_answered_and_unknown_packets_ignored():
    feed = SnapshotFeed()
    await feed.publish(_table().snapshot())
    weather = _weather()
    server = await _serve(feed, weather)
    try:
        reader, writer = await _login(server)
        await _read_until(reader, "$AR")

        writer.write(b"$ZZBOS_APP:SERVER:SOMETHING\r\n")
        writer.write(b"$AXBOS_APP:SERVER:METAR:KBOS\r\n")
        await writer.drain()
        assert (await _read_until(reader, "$AR"))[-1] == f"$ARSERVER:BOS_APP:METAR:{KBOS_METAR}"

        writer.write(b"$AXBOS_APP:SERVER:METAR:KPVD\r\n")
        writer.write(b"$CQBOS_APP:SERVER:ATC:BOS_TWR\r\n")
        await writer.drain()
        assert (await _read_until(reader, "$CR"))[-1] == "$CRSERVER:BOS_APP:ATC:Y:BOS_TWR"
        assert "KPVD" in weather.stations()

        writer.write(b"$CQBOS_APP:SERVER:FP:JBU1\r\n")
        await writer.drain()
        assert (await _read_until(reader, "$FP"))[-1].startswith("$FPJBU1::I:A320:")

        writer.write(b"#SBBOS_APP:JBU1:PIR\r\n")
        await writer.drain()
        assert (await _read_until(reader, "#SB"))[-1] == (
            "#SBJBU1:BOS_APP:PI:GEN:EQUIPMENT=A320:AIRLINE=JBU"
        )

        writer.write(b"#DABOS_APP:SERVER\r\n")
        await writer.drain()
        assert await asyncio.wait_for(reader.read(), timeout=2) == b""
        await _close(writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_malformed_login_gets_error_and_close():
    server = await _serve(SnapshotFeed(), WeatherCache())
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        await _read_until(reader, "$DI")
        writer.write(b"#AABOS_APP:SERVER:Jane Doe:1234567:secret:5:8\r\n")
        await writer.drain()

        lines = await _read_until(reader, "$ER")
        assert lines[-1] == "$ERSERVER:unknown:010::Unsupported protocol revision"
        assert await asyncio.wait_for(reader.read(), timeout=2) == b""
        await _close(writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_garbage_before_login_closes_session():
    server = await _serve(SnapshotFeed(), WeatherCache())
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        await _read_until(reader, "$DI")
        writer.write(b"hello there\r\n")
        await writer.drain()

        assert (await _read_until(reader, "$ER"))[-1] == "$ERSERVER:unknown:004::Unknown packet framing"
        assert await asyncio.wait_for(reader.read(), timeout=2) == b""
        await _close(writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_handshake_timeout_closes_idle_connection():
    server = await _serve(SnapshotFeed(), WeatherCache(), handshake_timeout=0.1)
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        await _read_until(reader, "$DI")

        assert await asyncio.wait_for(reader.read(), timeout=2) == b""
        await _close(writer)
        for _ in range(100):
            if not server.sessions:
                break
            await asyncio.sleep(0.01)
        assert not server.sessions
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_server_start_fails_when_port_is_taken():
    first = await _serve(SnapshotFeed(), WeatherCache())
    try:
        second = ProtocolServer(
            feed=SnapshotFeed(), weather=WeatherCache(), host="127.0.0.1", port=first.bound_port
        )
        with pytest.raises(RuntimeError):
            await second.start()
    finally:
        await first.stop()


@pytest.mark.anyio
async def test_each_client_gets_its_own_catch_up_and_deltas():
    feed = SnapshotFeed()
    snapshot = _table().snapshot()
    await feed.publish(snapshot)
    server = await _serve(feed, _weather())
    try:
        first_reader, first_writer = await _login(server)
        await _read_until(first_reader, "$AR")

        moved = tuple(
            record.model_copy(update={"latitude": 42.35}) if record.key == "A1B2C3" else record
            for record in snapshot.aircraft
        )
        await feed.publish(snapshot.model_copy(update={"aircraft": moved}))

        delta = await _read_until(first_reader, "@N:JBU1")
        assert delta == ["@N:JBU1:0201:1:42.35000:-71.00000:5000:250:1024:0"]

        second_reader, second_writer = await _login(server)
        catch_up = await _read_until(second_reader, "$AR")
        assert catch_up[1:3] == [
            "@N:JBU1:0201:1:42.35000:-71.00000:5000:250:1024:0",
            "@N:N123AB:0202:1:42.40000:-71.10000:2500:110:2048:0",
        ]
        assert sum(line.startswith("$FP") for line in catch_up) == 2

        assert len(server.active_sessions()) == 2
        await _close(first_writer)
        await _close(second_writer)
    finally:
        await server.stop()


@pytest.mark.anyio
async def test_metar_fetched_after_a_miss_arrives_on_a_later_tick():
    feed = SnapshotFeed()
    await feed.publish(_table().snapshot())
    weather = _weather()
    server = await _serve(feed, weather)
    try:
        reader, writer = await _login(server)
        await _read_until(reader, "$AR")

        writer.write(b"$AXBOS_APP:SERVER:METAR:KPVD\r\n")
        writer.write(b"$CQBOS_APP:SERVER:ATC:BOS_TWR\r\n")
        await writer.drain()
        await _read_until(reader, "$CR")
        assert "KPVD" in weather.stations()

        weather.update(MetarObservation(station="KPVD", raw=KPVD_METAR, fetched_at=2.0))

        lines = await _read_until(reader, "$AR")
        assert lines[-1] == f"$ARSERVER:BOS_APP:METAR:{KPVD_METAR}"
        await _close(writer)
    finally:
        await server.stop()


class FakeWriter:
    def __init__(self):
        self.buffer = bytearray()
        self.closed = False

    def get_extra_info(self, name):
        return ("127.0.0.1", 50000)

    def write(self, data):
        self.buffer.extend(data)

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.mark.anyio
async def test_positions_are_dead_reckoned_for_airborne_aircraft():
    table = _table()
    record = table.get("A1B2C3")
    session = ClientSession(
        asyncio.StreamReader(),
        FakeWriter(),
        feed=SnapshotFeed(),
        weather=WeatherCache(),
        config=SessionConfig(interpolate=True, interpolate_max_age=20, delay_seconds=0),
    )

    lat, lon = session.position_for(record, now=110)
    assert lat == pytest.approx(42.30, abs=1e-3)
    assert lon > -71.00

    assert session.position_for(record, now=100) == (42.30, -71.00)
    assert session.position_for(record, now=200) == (42.30, -71.00)

    grounded = record.model_copy(update={"on_ground": True})
    assert session.position_for(grounded, now=110) == (42.30, -71.00)

    session.config.delay_seconds = 100
    assert session.position_for(record, now=210) == pytest.approx((lat, lon))


@pytest.mark.anyio
async def test_unchanged_positions_are_resent_after_keepalive():
    session = ClientSession(
        asyncio.StreamReader(),
        FakeWriter(),
        feed=SnapshotFeed(),
        weather=WeatherCache(),
        config=SessionConfig(interpolate=False, position_keepalive=15),
    )
    session.callsign = "BOS_APP"
    snapshot = _table().snapshot()

    first = session.render(snapshot, now=1000)
    assert sum(line.startswith("@N") for line in first) == 2
    assert session.render(snapshot, now=1005) == []
    again = session.render(snapshot, now=1015)
    assert [line for line in again if not line.startswith("@N")] == []
    assert len(again) == 2


class BrokenPipeWriter(FakeWriter):
    async def drain(self):
        raise ConnectionResetError("peer went away")


def _active_session(writer, **config) -> ClientSession:
    session = ClientSession(
        asyncio.StreamReader(),
        writer,
        feed=SnapshotFeed(),
        weather=WeatherCache(),
        config=SessionConfig(interpolate=False, **config),
    )
    session.callsign = "BOS_APP"
    session.state = SessionState.ACTIVE
    return session


@pytest.mark.anyio
async def test_write_failure_closes_the_session():
    writer = BrokenPipeWriter()
    session = _active_session(writer)

    assert await session.send(["#TMSERVER:BOS_APP:hello"]) is False
    assert session.state is SessionState.CLOSED
    assert writer.closed
    assert await session.send(["#TMSERVER:BOS_APP:again"]) is False


@pytest.mark.anyio
async def test_delivery_error_is_logged_and_closes_the_session(monkeypatch, caplog):
    writer = FakeWriter()
    session = _active_session(writer, delivery_interval=0)

    def explode(snapshot, now):
        raise RuntimeError("render failed")

    monkeypatch.setattr(session, "render", explode)

    with caplog.at_level("ERROR", logger="livetraffic.fsd.session"):
        await asyncio.wait_for(session._delivery_loop(), timeout=2)

    assert session.state is SessionState.CLOSED
    assert writer.closed
    assert "Delivery to BOS_APP failed" in caplog.text
