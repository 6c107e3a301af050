"""Authoritative table of tracked aircraft fused from multiple position feeds."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any, Callable, Iterable

from livetraffic.models.aircraft import AircraftRecord, AircraftUpdate, FlightPlan
from livetraffic.models.snapshot import FusedSnapshot
from livetraffic.models.weather import MetarObservation
from livetraffic.services.squawk import SquawkManager

logger = logging.getLogger("livetraffic.fusion")


@dataclass(frozen=True)
class FieldStamp:
    source: str
    timestamp: float


@dataclass
class _TrackedAircraft:
    key: str
    icao24: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    stamps: dict[str, FieldStamp] = field(default_factory=dict)
    flight_plan: FlightPlan | None = None
    squawk: str | None = None
    last_seen: float = 0.0

    def to_record(self) -> AircraftRecord:
        position = self.values.get("position")
        position_stamp = self.stamps.get("position")
        return AircraftRecord(
            key=self.key,
            icao24=self.icao24,
            callsign=self.values.get("callsign"),
            latitude=position[0] if position else None,
            longitude=position[1] if position else None,
            altitude_ft=self.values.get("altitude_ft"),
            ground_speed_kt=self.values.get("ground_speed_kt"),
            heading_deg=self.values.get("heading_deg"),
            vertical_rate_fpm=self.values.get("vertical_rate_fpm"),
            on_ground=self.values.get("on_ground"),
            transponder_code=self.values.get("transponder_code"),
            aircraft_type=self.values.get("aircraft_type"),
            registration=self.values.get("registration"),
            origin=self.values.get("origin"),
            destination=self.values.get("destination"),
            position_source=position_stamp.source if position_stamp else None,
            position_timestamp=position_stamp.timestamp if position_stamp else None,
            flight_plan=self.flight_plan,
            squawk=self.squawk,
            last_seen=self.last_seen,
        )


class FusionTable:
    """Merge sparse per-feed reports into one record per identity key.

    Every field is merged independently: the value with the newest source
    timestamp wins. Reports from different feeds whose timestamps fall within
    ``tie_window`` seconds of each other are settled by ``source_priority``
    (earlier entries rank higher). All access goes through one lock, and
    :meth:`snapshot` returns frozen copies.
    """

    def __init__(
        self,
        *,
        squawks: SquawkManager | None = None,
        expiry_seconds: float = 60.0,
        source_priority: Iterable[str] = (),
        tie_window: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.squawks = squawks
        self.expiry_seconds = expiry_seconds
        self.tie_window = tie_window
        self.clock = clock
        priority = list(source_priority)
        self._rank = {name: len(priority) - index for index, name in enumerate(priority)}
        self._aircraft: dict[str, _TrackedAircraft] = {}
        self._aliases: dict[str, str] = {}
        self._logical_timestamp = 0.0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._aircraft)

    def _accepts(self, current: FieldStamp | None, candidate: FieldStamp) -> bool:
        if current is None:
            return True
        if candidate.source == current.source:
            return candidate.timestamp >= current.timestamp
        delta = candidate.timestamp - current.timestamp
        if delta > self.tie_window:
            return True
        if delta < -self.tie_window:
            return False
        candidate_rank = self._rank.get(candidate.source, 0)
        current_rank = self._rank.get(current.source, 0)
        if candidate_rank != current_rank:
            return candidate_rank > current_rank
        return candidate.timestamp >= current.timestamp

    def _resolve_key(self, update: AircraftUpdate) -> str | None:
        """Find the live record an update belongs to, registering aliases.

        Must be called with the lock held.
        """

        key = update.identity_key
        if key is None:
            return None
        if key in self._aircraft:
            return key
        if key in self._aliases:
            return self._aliases[key]

        callsign = (update.callsign or "").strip().upper()
        if callsign:
            for tracked in self._aircraft.values():
                if tracked.values.get("callsign") != callsign:
                    continue
                # Only merge when neither side contradicts the other's hex
                if update.icao24 and tracked.icao24 and tracked.icao24 != key:
                    continue
                if key != tracked.key:
                    self._aliases[key] = tracked.key
                return tracked.key
        return key

    def apply_update(self, update: AircraftUpdate) -> AircraftRecord | None:
        """Fuse one report into the table and return the resulting record."""

        values = update.field_values()
        candidate = FieldStamp(update.source, update.timestamp)

        with self._lock:
            key = self._resolve_key(update)
            if key is None:
                logger.debug("Dropping %s update without identity", update.source)
                return None

            tracked = self._aircraft.get(key)
            if tracked is None:
                tracked = _TrackedAircraft(key=key)
                self._aircraft[key] = tracked
                logger.info("Tracking %s (%s)", key, values.get("callsign") or "no callsign")

            if update.icao24 and tracked.icao24 is None:
                tracked.icao24 = update.icao24.strip().upper()

            for name, value in values.items():
                if self._accepts(tracked.stamps.get(name), candidate):
                    tracked.values[name] = value
                    tracked.stamps[name] = candidate

            tracked.last_seen = self.clock()
            self._logical_timestamp = max(self._logical_timestamp, update.timestamp)

            if tracked.squawk is None and self.squawks is not None:
                tracked.squawk = self.squawks.allocate(key)

            return tracked.to_record()

    def attach_flight_plan(self, key: str, plan: FlightPlan) -> bool:
        with self._lock:
            tracked = self._aircraft.get(self._aliases.get(key, key))
            if tracked is None:
                return False
            tracked.flight_plan = plan
            return True

    def get(self, key: str) -> AircraftRecord | None:
        with self._lock:
            tracked = self._aircraft.get(self._aliases.get(key, key))
            return tracked.to_record() if tracked else None

    def find_by_callsign(self, callsign: str) -> AircraftRecord | None:
        wanted = callsign.strip().upper()
        with self._lock:
            for tracked in self._aircraft.values():
                if tracked.values.get("callsign") == wanted:
                    return tracked.to_record()
        return None

    def sweep_expired(self, now: float | None = None) -> list[str]:
        """Remove aircraft not updated within the expiry threshold."""

        now = self.clock() if now is None else now
        removed: list[str] = []
        with self._lock:
            for key, tracked in list(self._aircraft.items()):
                if now - tracked.last_seen <= self.expiry_seconds:
                    continue
                del self._aircraft[key]
                if self.squawks is not None:
                    self.squawks.release(key)
                removed.append(key)
                logger.info("Removing %s (%s)", key, tracked.values.get("callsign") or "-")
            if removed:
                gone = set(removed)
                self._aliases = {
                    alias: target for alias, target in self._aliases.items() if target not in gone
                }
        return removed

    def snapshot(self, metars: Iterable[MetarObservation] = ()) -> FusedSnapshot:
        with self._lock:
            aircraft = tuple(tracked.to_record() for tracked in self._aircraft.values())
            logical_timestamp = self._logical_timestamp
        return FusedSnapshot(
            logical_timestamp=logical_timestamp,
            created_at=self.clock(),
            aircraft=aircraft,
            metars=tuple(metars),
        )


__all__ = ["FieldStamp", "FusionTable"]
