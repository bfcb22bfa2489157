"""
geo_index.py — "Points within radius" and nearest-neighbour search.

The database narrows candidates with an indexed bounding-box query
(``latitude``/``longitude`` columns); this module performs the exact
step on what comes back:

    candidates ──▶ bbox reject ──▶ Haversine ≤ radius ──▶ sort ──▶ top-k

It works on any object; a ``locate`` callable returns each item's
``Coordinate`` (or None, meaning "never matchable").
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from guardian_backend.app.core.errors import ValidationError
from guardian_backend.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    haversine_km,
    inside_bbox,
)

T = TypeVar("T")


@dataclass
class GeoHit(Generic[T]):
    """One item inside the search circle."""
    item: T
    distance_km: float

    @property
    def distance_m(self) -> float:
        return self.distance_km * 1000.0


def points_within(
    center: Coordinate,
    radius_m: float,
    items: Iterable[T],
    locate: Callable[[T], Optional[Coordinate]],
    *,
    predicate: Optional[Callable[[T], bool]] = None,
    sort_by_distance: bool = True,
) -> List[GeoHit[T]]:
    """
    Items whose location lies within ``radius_m`` of ``center``.

    Parameters
    ----------
    center : Coordinate
        Search origin.
    radius_m : float
        Search radius in metres (inclusive).
    items : Iterable
        Candidates, typically the output of a bounding-box SQL query.
    locate : callable
        Returns the item's Coordinate, or None to skip it.
    predicate : callable, optional
        Extra filter applied before the distance check.
    sort_by_distance : bool
        Nearest first when True, otherwise input order is kept.

    Returns
    -------
    list[GeoHit]
    """
    if radius_m <= 0:
        raise ValidationError(f"Radius must be positive, got {radius_m}", field="radius_m")

    radius_km = radius_m / 1000.0
    bbox = bounding_box(center, radius_km)
    hits: List[GeoHit[T]] = []

    for item in items:
        if predicate is not None and not predicate(item):
            continue
        point = locate(item)
        if point is None:
            continue
        if not inside_bbox(point.latitude, point.longitude, *bbox):
            continue
        dist = haversine_km(center, point)
        if dist <= radius_km:
            hits.append(GeoHit(item=item, distance_km=dist))

    if sort_by_distance:
        hits.sort(key=lambda h: h.distance_km)
    return hits


def nearest(
    center: Coordinate,
    items: Iterable[T],
    locate: Callable[[T], Optional[Coordinate]],
    *,
    k: int = 1,
    max_distance_m: Optional[float] = None,
) -> List[GeoHit[T]]:
    """The ``k`` items closest to ``center`` (optionally capped by distance)."""
    if k <= 0:
        return []
    if max_distance_m is not None:
        return points_within(center, max_distance_m, items, locate)[:k]

    hits = []
    for item in items:
        point = locate(item)
        if point is not None:
            hits.append(GeoHit(item=item, distance_km=haversine_km(center, point)))
    hits.sort(key=lambda h: h.distance_km)
    return hits[:k]
