"""Immutable traffic snapshots moved through filtering and the delay buffer."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from livetraffic.models.aircraft import AircraftRecord
from livetraffic.models.weather import MetarObservation


class FusedSnapshot(BaseModel):
    """Point-in-time copy of every live aircraft plus the current METAR set."""

    logical_timestamp: float = Field(
        ..., description="Newest source timestamp fused into this snapshot"
    )
    created_at: float = Field(..., description="Wall-clock creation time")
    aircraft: tuple[AircraftRecord, ...] = Field(default=())
    metars: tuple[MetarObservation, ...] = Field(default=())

    model_config = ConfigDict(frozen=True)

    def get(self, key: str) -> AircraftRecord | None:
        for record in self.aircraft:
            if record.key == key:
                return record
        return None

    def find_callsign(self, callsign: str) -> AircraftRecord | None:
        wanted = callsign.strip().upper()
        for record in self.aircraft:
            if record.callsign == wanted:
                return record
        return None

    def metar(self, station: str) -> MetarObservation | None:
        wanted = station.strip().upper()
        for observation in self.metars:
            if observation.station == wanted:
                return observation
        return None


@dataclass(order=True)
class DelayedFrame:
    """A snapshot waiting in the delay buffer until ``eligible_at``."""

    logical_timestamp: float
    sequence: int
    eligible_at: float = field(compare=False)
    snapshot: FusedSnapshot = field(compare=False)


__all__ = ["DelayedFrame", "FusedSnapshot"]
