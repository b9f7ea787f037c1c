from __future__ import annotations
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Any

"""
Geospatial helpers.

We keep a tiny geometry layer here so dedupe and candidate filtering can do distance
calculations without pulling in heavier GIS dependencies.
"""

EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    return great_circle_distance_m(a.lat, a.lon, b.lat, b.lon)


def great_circle_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters on a spherical earth.

    Symmetric in its arguments: the latitude terms enter through a product of cosines
    and the deltas are squared, so swapping the points yields the same float.
    """
    phi1 = radians(lat1)
    phi2 = radians(lat2)

    dphi = radians(lat2 - lat1)
    dlam = radians(lng2 - lng1)

    h = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlam / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, h)))


def great_circle_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return great_circle_distance_m(lat1, lng1, lat2, lng2) / 1000.0


def parse_coordinate(value: Any) -> GeoPoint:
    """Parse a seed coordinate.

    Accepts a `"lat, lng"` string, a flat `{lat, lng}` (or `lon`) mapping, or a provider
    item carrying `position.{lat,lng}`.

    Raises:
        ValueError: If the value has no usable coordinate or it is out of range.
    """
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 2:
            raise ValueError(f"Invalid coordinate format: {value!r}")
        raw_lat, raw_lng = parts
    elif isinstance(value, dict):
        position = value.get("position")
        source = position if isinstance(position, dict) else value
        raw_lat = source.get("lat")
        raw_lng = source.get("lng", source.get("lon"))
    else:
        raise ValueError(f"Invalid coordinate: {value!r}")

    try:
        lat, lng = float(raw_lat), float(raw_lng)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid coordinate format: {value!r}") from None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValueError(f"Coordinate out of range: {value!r}")
    return GeoPoint(lat=lat, lon=lng)
