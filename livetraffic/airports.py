"""Airport lookups backed by an OurAirports-format CSV file."""

from __future__ import annotations

import csv
from dataclasses import dataclass
import logging
from pathlib import Path

from livetraffic.geo import LatLon

logger = logging.getLogger("livetraffic.airports")


@dataclass(frozen=True)
class Airport:
    ident: str
    iata_code: str | None
    latitude: float
    longitude: float

    @property
    def location(self) -> LatLon:
        return LatLon(lat=self.latitude, lon=self.longitude)


class AirportDatabase:
    """In-memory airport index keyed by ICAO ident, with an IATA mapping."""

    def __init__(self, airports: list[Airport] | None = None) -> None:
        self._by_ident: dict[str, Airport] = {}
        self._iata_to_icao: dict[str, str] = {}
        for airport in airports or []:
            self.add(airport)

    @classmethod
    def load(cls, path: str | Path) -> "AirportDatabase":
        """Read ``ident, iata_code, latitude_deg, longitude_deg`` columns from CSV.

        Rows with unparseable coordinates are skipped.
        """

        database = cls()
        with Path(path).open(newline="", encoding="utf-8") as handle:
            for row in csv.DictReader(handle):
                ident = (row.get("ident") or "").strip().upper()
                if not ident:
                    continue
                try:
                    latitude = float(row["latitude_deg"])
                    longitude = float(row["longitude_deg"])
                except (KeyError, TypeError, ValueError):
                    logger.debug("Skipping airport row without coordinates: %s", ident)
                    continue
                iata = (row.get("iata_code") or "").strip().upper() or None
                database.add(Airport(ident, iata, latitude, longitude))

        logger.info("Loaded %s airports from %s", len(database), path)
        return database

    def add(self, airport: Airport) -> None:
        self._by_ident[airport.ident] = airport
        if airport.iata_code:
            self._iata_to_icao[airport.iata_code] = airport.ident

    def lookup(self, icao: str) -> Airport | None:
        return self._by_ident.get(icao.strip().upper())

    def icao_from_iata(self, iata: str) -> str | None:
        return self._iata_to_icao.get(iata.strip().upper())

    def __len__(self) -> int:
        return len(self._by_ident)


__all__ = ["Airport", "AirportDatabase"]
