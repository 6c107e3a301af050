import asyncio

import pytest

from livetraffic.geo import LatLon
from livetraffic.ingestors.base import FeedError
from livetraffic.models import AircraftUpdate, FlightPlan
from livetraffic.services.enricher import FlightPlanEnricher, is_airline_callsign
from livetraffic.services.fusion import FusionTable

BOSTON = LatLon(lat=42.36, lon=-71.00)


class StubProvider:
    def __init__(self, result=None, error: Exception | None = None, delay: float = 0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def get_flight_plan(self, callsign: str):
        self.calls.append(callsign)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def _table_with(*callsigns, lat=42.30):
    table = FusionTable()
    for index, callsign in enumerate(callsigns):
        table.apply_update(
            AircraftUpdate(
                source="flightradar24",
                timestamp=100,
                icao24=f"A0000{index}",
                callsign=callsign,
                latitude=lat,
                longitude=-71.00,
                altitude_ft=5000,
            )
        )
    return table


def _enricher(provider, table, **kwargs):
    return FlightPlanEnricher(provider=provider, fusion=table, center=BOSTON, range_nm=30, **kwargs)


def test_airline_callsign_pattern():
    assert is_airline_callsign("BAW117")
    assert is_airline_callsign("DAL42A")
    assert not is_airline_callsign("N123AB")
    assert not is_airline_callsign("BA117")
    assert not is_airline_callsign(None)


@pytest.mark.anyio
async def test_lookup_attaches_plan_for_airline_traffic():
    plan = FlightPlan(callsign="JBU1", origin="KBOS", destination="KJFK")
    provider = StubProvider(result=plan)
    table = _table_with("JBU1", "N123AB")
    enricher = _enricher(provider, table)

    started = enricher.schedule(table.snapshot(), now=0.0)
    await enricher.wait_idle()

    assert started == ["JBU1"]
    assert provider.calls == ["JBU1"]
    assert table.find_by_callsign("JBU1").flight_plan == plan
    assert enricher.lookups_issued == 1


@pytest.mark.anyio
async def test_cooldown_prevents_repeated_lookups():
    provider = StubProvider(result=None)
    table = _table_with("JBU1")
    enricher = _enricher(provider, table, cooldown_seconds=600)

    enricher.schedule(table.snapshot(), now=0.0)
    await enricher.wait_idle()
    enricher.schedule(table.snapshot(), now=300.0)
    await enricher.wait_idle()
    assert provider.calls == ["JBU1"]

    enricher.schedule(table.snapshot(), now=601.0)
    await enricher.wait_idle()
    assert provider.calls == ["JBU1", "JBU1"]


@pytest.mark.anyio
async def test_expired_attempts_are_forgotten():
    provider = StubProvider(result=None)
    enricher = _enricher(provider, _table_with("JBU1", "BAW117"), cooldown_seconds=600)

    enricher.schedule(enricher.fusion.snapshot(), now=0.0)
    await enricher.wait_idle()
    assert set(enricher._attempts) == {"JBU1", "BAW117"}

    later = _table_with("DAL42")
    enricher.schedule(later.snapshot(), now=700.0)
    await enricher.wait_idle()

    assert set(enricher._attempts) == {"DAL42"}


@pytest.mark.anyio
async def test_aircraft_out_of_range_is_not_looked_up():
    provider = StubProvider()
    table = _table_with("JBU1", lat=44.0)
    enricher = _enricher(provider, table)

    assert enricher.schedule(table.snapshot(), now=0.0) == []


@pytest.mark.anyio
async def test_disabled_enrichment_never_issues_lookups():
    provider = StubProvider(result=FlightPlan(callsign="JBU1"))
    table = _table_with("JBU1", "BAW117", "DAL42")
    enricher = _enricher(provider, table, enabled=False)

    for tick in range(5):
        assert enricher.schedule(table.snapshot(), now=tick * 1000.0) == []
    await enricher.wait_idle()

    assert provider.calls == []
    assert enricher.lookups_issued == 0
    assert not enricher.is_eligible(table.find_by_callsign("JBU1"), now=0.0)


@pytest.mark.anyio
async def test_failed_lookup_is_logged_and_ignored():
    provider = StubProvider(error=FeedError("FlightAware returned HTTP 503"))
    table = _table_with("JBU1")
    enricher = _enricher(provider, table)

    enricher.schedule(table.snapshot(), now=0.0)
    await enricher.wait_idle()

    assert table.find_by_callsign("JBU1").flight_plan is None


@pytest.mark.anyio
async def test_slow_lookup_times_out():
    provider = StubProvider(result=FlightPlan(callsign="JBU1"), delay=5)
    table = _table_with("JBU1")
    enricher = _enricher(provider, table, lookup_timeout=0.05)

    assert await enricher.lookup("A00000", "JBU1") is None
    assert table.find_by_callsign("JBU1").flight_plan is None


@pytest.mark.anyio
async def test_aclose_cancels_pending_lookups():
    provider = StubProvider(result=FlightPlan(callsign="JBU1"), delay=5)
    table = _table_with("JBU1")
    enricher = _enricher(provider, table)

    enricher.schedule(table.snapshot(), now=0.0)
    await asyncio.sleep(0)
    await asyncio.wait_for(enricher.aclose(), timeout=1)

    assert table.find_by_callsign("JBU1").flight_plan is None
