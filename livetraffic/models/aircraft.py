"""Models for aircraft state reported by position feeds and held by the fusion table."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Fields fused per source. Latitude/longitude are fused as one position fix.
FUSED_FIELDS: tuple[str, ...] = (
    "callsign",
    "position",
    "altitude_ft",
    "ground_speed_kt",
    "heading_deg",
    "vertical_rate_fpm",
    "on_ground",
    "transponder_code",
    "aircraft_type",
    "registration",
    "origin",
    "destination",
)


class FlightPlan(BaseModel):
    """Filed flight plan attached to an aircraft by the enricher."""

    callsign: str = Field(..., description="Callsign the plan was looked up for")
    origin: str = Field(default="", description="Origin ICAO code")
    destination: str = Field(default="", description="Destination ICAO code")
    route: str = Field(default="", description="Filed route string")
    aircraft_type: str = Field(default="", description="ICAO aircraft type designator")
    cruise_speed_kt: int = Field(default=0, description="Filed cruise true airspeed")
    cruise_altitude_ft: int = Field(default=0, description="Filed cruise altitude in feet")
    scheduled_departure: Optional[datetime] = Field(
        default=None, description="Scheduled gate departure (UTC)"
    )
    scheduled_arrival: Optional[datetime] = Field(
        default=None, description="Scheduled gate arrival (UTC)"
    )
    departure_gate: Optional[str] = Field(default=None, description="Departure gate")
    arrival_gate: Optional[str] = Field(default=None, description="Arrival gate")

    model_config = ConfigDict(frozen=True)


class AircraftUpdate(BaseModel):
    """Sparse report about one aircraft from a single position feed.

    Fields left as ``None`` were not supplied by the provider and must not
    overwrite previously fused values.
    """

    source: str = Field(..., description="Name of the reporting feed")
    timestamp: float = Field(..., description="Source timestamp in epoch seconds")
    icao24: Optional[str] = Field(default=None, description="ICAO 24-bit hex address")
    callsign: Optional[str] = Field(default=None, description="Aircraft callsign")
    latitude: Optional[float] = Field(default=None, description="Latitude in decimal degrees")
    longitude: Optional[float] = Field(default=None, description="Longitude in decimal degrees")
    altitude_ft: Optional[float] = Field(default=None, description="Altitude in feet")
    ground_speed_kt: Optional[float] = Field(default=None, description="Ground speed in knots")
    heading_deg: Optional[float] = Field(default=None, description="Track in degrees")
    vertical_rate_fpm: Optional[float] = Field(
        default=None, description="Vertical rate in feet per minute"
    )
    on_ground: Optional[bool] = Field(default=None, description="Whether the aircraft is on the ground")
    transponder_code: Optional[str] = Field(
        default=None, description="Squawk reported by the aircraft's transponder"
    )
    aircraft_type: Optional[str] = Field(default=None, description="Aircraft type designator")
    registration: Optional[str] = Field(default=None, description="Tail number")
    origin: Optional[str] = Field(default=None, description="Origin ICAO reported by the feed")
    destination: Optional[str] = Field(
        default=None, description="Destination ICAO reported by the feed"
    )

    model_config = ConfigDict(extra="ignore")

    @property
    def identity_key(self) -> str | None:
        if self.icao24 and self.icao24.strip():
            return self.icao24.strip().upper()
        if self.callsign and self.callsign.strip():
            return self.callsign.strip().upper()
        return None

    def field_values(self) -> dict[str, object]:
        """Return the supplied fused fields, keyed as in ``FUSED_FIELDS``."""

        values: dict[str, object] = {}
        if self.latitude is not None and self.longitude is not None:
            values["position"] = (self.latitude, self.longitude)
        for name in FUSED_FIELDS:
            if name == "position":
                continue
            value = getattr(self, name)
            if isinstance(value, str):
                value = value.strip().upper() or None
            if value is not None:
                values[name] = value
        return values


class AircraftRecord(BaseModel):
    """Fused, point-in-time view of one tracked aircraft."""

    key: str = Field(..., description="Identity key (ICAO hex, else callsign)")
    icao24: Optional[str] = Field(default=None, description="ICAO 24-bit hex address")
    callsign: Optional[str] = Field(default=None, description="Aircraft callsign")
    latitude: Optional[float] = Field(default=None, description="Latitude in decimal degrees")
    longitude: Optional[float] = Field(default=None, description="Longitude in decimal degrees")
    altitude_ft: Optional[float] = Field(default=None, description="Altitude in feet")
    ground_speed_kt: Optional[float] = Field(default=None, description="Ground speed in knots")
    heading_deg: Optional[float] = Field(default=None, description="Track in degrees")
    vertical_rate_fpm: Optional[float] = Field(default=None, description="Vertical rate in ft/min")
    on_ground: Optional[bool] = Field(default=None, description="Ground state")
    transponder_code: Optional[str] = Field(default=None, description="Reported squawk")
    aircraft_type: Optional[str] = Field(default=None, description="Aircraft type designator")
    registration: Optional[str] = Field(default=None, description="Tail number")
    origin: Optional[str] = Field(default=None, description="Feed-reported origin")
    destination: Optional[str] = Field(default=None, description="Feed-reported destination")
    position_source: Optional[str] = Field(
        default=None, description="Feed that supplied the current position"
    )
    position_timestamp: Optional[float] = Field(
        default=None, description="Source timestamp of the current position"
    )
    flight_plan: Optional[FlightPlan] = Field(default=None, description="Enriched flight plan")
    squawk: Optional[str] = Field(default=None, description="Assigned beacon code")
    last_seen: float = Field(..., description="Wall-clock time of the last fusion write")

    model_config = ConfigDict(frozen=True)

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


__all__ = [
    "AircraftRecord",
    "AircraftUpdate",
    "FlightPlan",
    "FUSED_FIELDS",
]
