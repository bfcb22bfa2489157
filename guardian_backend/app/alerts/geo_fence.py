"""
geo_fence.py — Trusted-location geofence evaluation.

A trusted location is a circle a user marks as safe (home, work, ...).
A point is inside when:

    haversine_km(center, point) × 1000 ≤ radius_m        (inclusive)

Distance is computed in kilometers and converted to metres *before* the
comparison, since radii are stored in metres. A 1 mm tolerance absorbs
floating-point noise so a point placed exactly on the boundary counts
as inside.

═══════════════════════════════════════════════════════════════════════════
OVERLAPPING ZONES
═══════════════════════════════════════════════════════════════════════════

When a point lies in several circles, the reported match depends on the
configured policy:

    nearest   the zone whose centre is closest (ties → creation order)
    first     the first zone in creation order that contains the point

Both policies agree on ``is_inside``; only ``matched_location`` differs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from guardian_backend.app.alerts.models import TrustedLocation
from guardian_backend.app.core.errors import ValidationError
from guardian_backend.app.spatial.radius_utils import Coordinate, haversine_km

logger = logging.getLogger(__name__)

BOUNDARY_TOLERANCE_M = 1e-3
MATCH_POLICIES = ("nearest", "first")


@dataclass
class GeofenceMatch:
    location_id: str
    name: str
    distance_m: float
    radius_m: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "name": self.name,
            "distance_m": round(self.distance_m, 2),
            "radius_m": self.radius_m,
        }


@dataclass
class GeofenceResult:
    is_inside: bool
    matched_location: Optional[GeofenceMatch] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_inside": self.is_inside,
            "matched_location": (
                self.matched_location.to_dict() if self.matched_location else None
            ),
        }


def evaluate_geofence(
    locations: Sequence[TrustedLocation],
    point: Coordinate,
    policy: str = "nearest",
) -> GeofenceResult:
    """
    Test ``point`` against a user's trusted locations.

    Parameters
    ----------
    locations : Sequence[TrustedLocation]
        The user's zones, in creation order.
    point : Coordinate
        Position to test.
    policy : str
        ``"nearest"`` or ``"first"``.

    Returns
    -------
    GeofenceResult
    """
    if policy not in MATCH_POLICIES:
        raise ValidationError(f"Unknown geofence policy '{policy}'", field="policy")

    best: Optional[GeofenceMatch] = None
    for loc in locations:
        dist_m = haversine_km(loc.coordinate, point) * 1000.0
        if dist_m > loc.radius_m + BOUNDARY_TOLERANCE_M:
            continue
        match = GeofenceMatch(
            location_id=loc.location_id,
            name=loc.name,
            distance_m=dist_m,
            radius_m=loc.radius_m,
        )
        if policy == "first":
            return GeofenceResult(is_inside=True, matched_location=match)
        if best is None or dist_m < best.distance_m:
            best = match

    return GeofenceResult(is_inside=best is not None, matched_location=best)


class GeofenceEvaluator:
    """Loads a user's zones from the store and evaluates a point."""

    def __init__(self, store, policy: str = "nearest"):
        if policy not in MATCH_POLICIES:
            raise ValidationError(f"Unknown geofence policy '{policy}'", field="policy")
        self.store = store
        self.policy = policy

    def evaluate(self, user_id: str, coordinates: Sequence[float]) -> GeofenceResult:
        """Parse ``[lng, lat]`` and evaluate it for ``user_id``."""
        point = Coordinate.from_lnglat(coordinates)
        return self.evaluate_point(user_id, point)

    def evaluate_point(self, user_id: str, point: Coordinate, uow=None) -> GeofenceResult:
        """Evaluate a parsed point; reuse ``uow`` when already inside one."""
        if uow is not None:
            locations = uow.list_trusted_locations(user_id)
        else:
            locations = self.store.list_trusted_locations(user_id)
        result = evaluate_geofence(locations, point, self.policy)
        if result.is_inside:
            logger.debug(
                "User %s inside trusted location %s",
                user_id, result.matched_location.name,
                extra={"user_id": user_id},
            )
        return result
