"""Service-layer components of the LiveTraffic engine."""

from .delay_buffer import DelayBuffer
from .delivery import SnapshotFeed
from .enricher import FlightPlanEnricher, is_airline_callsign
from .filtering import filter_snapshot, in_scope
from .fusion import FusionTable
from .squawk import SquawkManager
from .weather_cache import WeatherCache

__all__ = [
    "DelayBuffer",
    "FlightPlanEnricher",
    "FusionTable",
    "SnapshotFeed",
    "SquawkManager",
    "WeatherCache",
    "filter_snapshot",
    "in_scope",
    "is_airline_callsign",
]
