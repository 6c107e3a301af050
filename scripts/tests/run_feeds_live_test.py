#!/usr/bin/env python
"""
Run this to exercise the live position, flight plan and METAR feeds once.

Usage (from repo root):
    python scripts/tests/run_feeds_live_test.py
"""

import asyncio
from datetime import datetime, timezone

from livetraffic.geo import LatLon
from livetraffic.ingestors import (
    FeedError,
    FlightAwareIngestor,
    FlightRadarIngestor,
    NoaaMetarIngestor,
    OpenSkyIngestor,
)


# Boston Logan
CENTER = LatLon(lat=42.3643, lon=-71.0052)
STATION = "KBOS"
RADIUS_NM = 30


async def main() -> None:
    now = datetime.now(timezone.utc)
    print(f"=== Live feed test around {STATION} (UTC now: {now.isoformat()}) ===\n")

    print("Requesting METAR from NOAA...")
    metars = await NoaaMetarIngestor(stations=lambda: [STATION]).poll()
    for observation in metars:
        print(f"  {observation.raw}")

    airline_callsign = None
    for feed in (
        FlightRadarIngestor(center=CENTER, radius_nm=RADIUS_NM),
        OpenSkyIngestor(center=CENTER, radius_nm=RADIUS_NM),
    ):
        print(f"\nRequesting nearby aircraft from {feed.name}...")
        try:
            updates = await feed.poll()
        except FeedError as exc:
            print(f"  failed: {exc}")
            continue

        print(f"  received {len(updates)} aircraft. Showing a few:")
        for idx, u in enumerate(updates[:5], start=1):
            print(
                f"  {idx}. hex={u.icao24!r}, callsign={u.callsign!r}, "
                f"lat={u.latitude}, lon={u.longitude}, alt_ft={u.altitude_ft}, "
                f"gs_kt={u.ground_speed_kt}, hdg={u.heading_deg}"
            )
            if airline_callsign is None and u.callsign and u.callsign[:3].isalpha():
                airline_callsign = u.callsign

    if airline_callsign:
        print(f"\nRequesting flight plan for {airline_callsign} from FlightAware...")
        try:
            plan = await FlightAwareIngestor().get_flight_plan(airline_callsign)
        except FeedError as exc:
            print(f"  failed: {exc}")
        else:
            print(f"  {plan.model_dump() if plan else 'no plan found'}")


if __name__ == "__main__":
    asyncio.run(main())
