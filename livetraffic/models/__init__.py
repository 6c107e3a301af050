"""Pydantic models for the LiveTraffic engine."""

from .aircraft import AircraftRecord, AircraftUpdate, FlightPlan
from .snapshot import DelayedFrame, FusedSnapshot
from .weather import MetarObservation

__all__ = [
    "AircraftRecord",
    "AircraftUpdate",
    "DelayedFrame",
    "FlightPlan",
    "FusedSnapshot",
    "MetarObservation",
]
