"""Feed ingestors for LiveTraffic."""

from .base import FeedError, PollingIngestor
from .flightaware import FlightAwareIngestor
from .flightradar import FlightRadarIngestor
from .noaa import NoaaMetarIngestor
from .opensky import OpenSkyIngestor

__all__ = [
    "FeedError",
    "FlightAwareIngestor",
    "FlightRadarIngestor",
    "NoaaMetarIngestor",
    "OpenSkyIngestor",
    "PollingIngestor",
]
