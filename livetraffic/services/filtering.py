"""Radius and altitude filtering of fused snapshots."""

from __future__ import annotations

from livetraffic.geo import LatLon, distance_nm
from livetraffic.models.aircraft import AircraftRecord
from livetraffic.models.snapshot import FusedSnapshot


def in_scope(
    record: AircraftRecord,
    center: LatLon,
    radius_nm: float,
    floor_ft: float,
    ceiling_ft: float,
) -> bool:
    """Return True when the aircraft has a known position inside the scope."""

    if not record.has_position or record.altitude_ft is None:
        return False
    if not floor_ft <= record.altitude_ft <= ceiling_ft:
        return False
    position = LatLon(lat=record.latitude, lon=record.longitude)
    return distance_nm(center, position) <= radius_nm


def filter_snapshot(
    snapshot: FusedSnapshot,
    center: LatLon,
    radius_nm: float,
    floor_ft: float,
    ceiling_ft: float,
) -> FusedSnapshot:
    """Return a new snapshot holding only aircraft inside the radar scope.

    Aircraft with an unknown position or altitude are excluded. The input is
    left untouched, so filtering an already filtered snapshot with the same
    parameters yields an equal result.
    """

    kept = tuple(
        record
        for record in snapshot.aircraft
        if in_scope(record, center, radius_nm, floor_ft, ceiling_ft)
    )
    return snapshot.model_copy(update={"aircraft": kept})


__all__ = ["filter_snapshot", "in_scope"]
