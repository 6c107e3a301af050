"""Great-circle helpers shared by the filter, feeds and position interpolation."""

from __future__ import annotations

from dataclasses import dataclass
import math

EARTH_RADIUS_NM = 3440.065


@dataclass(frozen=True)
class LatLon:
    lat: float
    lon: float


@dataclass(frozen=True)
class BoundingBox:
    """Latitude/longitude box enclosing a radius around a point."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


def distance_nm(a: LatLon, b: LatLon) -> float:
    """Haversine distance between two points in nautical miles."""

    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_NM * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: LatLon, radius_nm: float) -> BoundingBox:
    lat_delta = radius_nm / 60.0
    lon_delta = radius_nm / max(60.0 * math.cos(math.radians(center.lat)), 0.0001)
    return BoundingBox(
        min_lat=max(center.lat - lat_delta, -90.0),
        max_lat=min(center.lat + lat_delta, 90.0),
        min_lon=center.lon - lon_delta,
        max_lon=center.lon + lon_delta,
    )


def project_position(
    origin: LatLon, heading_deg: float, ground_speed_kt: float, elapsed_seconds: float
) -> LatLon:
    """Dead-reckon a position along a great circle for ``elapsed_seconds``."""

    if elapsed_seconds <= 0 or ground_speed_kt <= 0:
        return origin

    angular = (ground_speed_kt * elapsed_seconds / 3600.0) / EARTH_RADIUS_NM
    bearing = math.radians(heading_deg)
    lat1 = math.radians(origin.lat)
    lon1 = math.radians(origin.lon)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    lon_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return LatLon(lat=math.degrees(lat2), lon=lon_deg)


__all__ = ["BoundingBox", "LatLon", "bounding_box", "distance_nm", "project_position"]
