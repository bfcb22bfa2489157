"""
radius_utils.py — Geo maths for dispatch: coordinates, distance, ETA.

Provides:
    - ``Coordinate`` with strict longitude-first parsing
    - Haversine distance between two points (km, and metres)
    - Bounding-box pre-filter for "point within radius" queries
    - Straight-line arrival estimate from a per-vehicle speed table

All distances are in **kilometers** unless the name says metres.
Coordinates are in **decimal degrees**. Every external boundary speaks
``(lng, lat)`` order; nothing here guesses the axis order.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where:
    φ  = latitude in radians
    λ  = longitude in radians
    R  = Earth's mean radius = 6,371 km
    d  = great-circle distance in km

Distances are returned unrounded; rounding happens only for display.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from guardian_backend.app.core.errors import ValidationError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0

# Average straight-line speed per responder vehicle, km/h
AVERAGE_SPEED_KMH: Dict[str, float] = {
    "car": 30.0,
    "motorcycle": 35.0,
    "bicycle": 15.0,
    "foot": 5.0,
    "ambulance": 40.0,
}
DEFAULT_SPEED_KMH: float = 20.0


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValidationError(
                f"Latitude must be in [-90, 90], got {self.latitude}",
                field="coordinates",
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValidationError(
                f"Longitude must be in [-180, 180], got {self.longitude}",
                field="coordinates",
            )

    @classmethod
    def from_lnglat(cls, value: Any, *, field: str = "coordinates") -> "Coordinate":
        """
        Parse a ``[lng, lat]`` pair.

        Parameters
        ----------
        value : Sequence[float]
            Exactly two finite numbers, longitude first.

        Raises
        ------
        ValidationError
            Wrong shape, non-numeric, non-finite or out-of-range values.

        Examples
        --------
        >>> Coordinate.from_lnglat([-0.1181, 51.4988]).latitude
        51.4988
        """
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ValidationError(
                "Coordinates must be a [longitude, latitude] pair", field=field,
            )
        if len(value) != 2:
            raise ValidationError(
                f"Coordinates must have exactly 2 values, got {len(value)}",
                field=field,
            )
        for v in value:
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValidationError("Coordinates must be numbers", field=field)
            if not math.isfinite(v):
                raise ValidationError("Coordinates must be finite", field=field)

        lng, lat = float(value[0]), float(value[1])
        if not (-180.0 <= lng <= 180.0):
            raise ValidationError(
                f"Longitude must be in [-180, 180], got {lng}", field=field,
            )
        if not (-90.0 <= lat <= 90.0):
            raise ValidationError(
                f"Latitude must be in [-90, 90], got {lat}", field=field,
            )
        return cls(latitude=lat, longitude=lng)

    def to_lnglat(self) -> List[float]:
        return [self.longitude, self.latitude]

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)


def validate_accuracy(accuracy: Any, *, field: str = "accuracy") -> float:
    """Accuracy radius in metres: a finite number ≥ 0."""
    if isinstance(accuracy, bool) or not isinstance(accuracy, (int, float)):
        raise ValidationError("Accuracy must be a number", field=field)
    if not math.isfinite(accuracy) or accuracy < 0:
        raise ValidationError(
            f"Accuracy must be a finite value >= 0, got {accuracy}", field=field,
        )
    return float(accuracy)


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine_km(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points in kilometers.

    Examples
    --------
    >>> round(haversine_km(Coordinate(51.5079, -0.0877),
    ...                    Coordinate(51.5055, -0.0754)), 2)
    0.89
    >>> haversine_km(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def distance_m(point1: Coordinate, point2: Coordinate) -> float:
    """Haversine distance converted to metres."""
    return haversine_km(point1, point2) * 1000.0


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box that fully contains the circle (center, radius_km).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees. Near the
    antimeridian the box is widened to every longitude rather than split.
    """
    angular = radius_km / EARTH_RADIUS_KM

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    # Longitude delta depends on latitude (widens toward poles)
    cos_lat = math.cos(center.lat_rad)
    ratio = math.sin(angular) / cos_lat if cos_lat > 1e-10 else 2.0
    if ratio < 1.0:
        delta_lon = math.degrees(math.asin(ratio))
    else:
        delta_lon = 180.0

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        min_lon,
        max_lon,
    )


def inside_bbox(
    lat: float, lon: float,
    min_lat: float, max_lat: float,
    min_lon: float, max_lon: float,
) -> bool:
    """Quick rectangular check."""
    return min_lat <= lat <= max_lat and min_lon <= lon <= max_lon


# ---------------------------------------------------------------------------
# Arrival estimate
# ---------------------------------------------------------------------------

def estimate_arrival(distance_km: float, vehicle_type: Optional[str]) -> Optional[str]:
    """
    Human-readable straight-line arrival estimate.

    Minutes are rounded up; anything above an hour is reported in whole
    hours, also rounded up. Returns None for a zero distance.

    >>> estimate_arrival(0.89, "car")
    '2 minutes'
    >>> estimate_arrival(50.0, "foot")
    '10 hours'
    """
    if distance_km <= 0:
        return None
    speed = AVERAGE_SPEED_KMH.get((vehicle_type or "").lower(), DEFAULT_SPEED_KMH)
    hours = distance_km / speed
    minutes = math.ceil(hours * 60)
    if minutes <= 60:
        return f"{minutes} minutes"
    return f"{math.ceil(hours)} hours"


# ---------------------------------------------------------------------------
# Utility: Human-readable distance
# ---------------------------------------------------------------------------

def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.73 km'
    """
    if km < 1.0:
        return f"{int(km * 1000)} m"
    return f"{km:.2f} km"
