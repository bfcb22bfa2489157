"""
enrichment.py — Best-effort location enrichment around the geocoder.

Every call here:
    • runs with a bounded timeout (on the shared worker executor)
    • logs and drops provider failures and timeouts
    • never runs inside a database transaction

so a slow or broken maps provider can delay nothing but the enrichment.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from guardian_backend.app.integrations.geocoder import Geocoder, MapMarker, Place
from guardian_backend.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADDRESS_FALLBACK = "Address not available"
NEARBY_SEARCH_RADIUS_M = 2000.0
NEARBY_LIMITS = {"hospital": 3, "police": 2}


class BestEffortRunner:
    """Run a callable with a timeout; return ``default`` on any failure."""

    def __init__(self, executor: Optional[Executor] = None, timeout: float = 8.0):
        self._executor = executor
        self.timeout = timeout

    def run(self, label: str, fn: Callable[..., T], *args: Any, default: T = None) -> T:
        try:
            if self._executor is None:
                return fn(*args)
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout:
                future.cancel()
                logger.warning("%s timed out after %.1fs", label, self.timeout)
                return default
        except Exception as e:
            logger.warning("%s failed: %s", label, e)
            return default


@dataclass
class PointEnrichment:
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None
    static_map_url: Optional[str] = None


class LocationEnricher:
    """Addresses, map thumbnails and nearby services for a point."""

    def __init__(self, geocoder: Geocoder, runner: BestEffortRunner):
        self.geocoder = geocoder
        self.runner = runner

    def enrich_point(self, point: Coordinate, *, marker_label: str = "A") -> PointEnrichment:
        address = self.runner.run(
            f"{self.geocoder.name} reverse geocode", self.geocoder.reverse_geocode, point,
        )
        static_map = self.map_url(point, [MapMarker(point, "red", marker_label)])
        return PointEnrichment(
            formatted_address=address.formatted_address if address else None,
            place_id=address.place_id if address else None,
            static_map_url=static_map,
        )

    def describe(self, point: Optional[Coordinate]) -> Optional[str]:
        """Formatted address, or the fallback text when none is available."""
        if point is None:
            return None
        address = self.runner.run(
            f"{self.geocoder.name} reverse geocode", self.geocoder.reverse_geocode, point,
        )
        if address is None or not address.formatted_address:
            return ADDRESS_FALLBACK
        return address.formatted_address

    def map_url(self, center: Coordinate, markers: Sequence[MapMarker] = ()) -> Optional[str]:
        return self.runner.run(
            f"{self.geocoder.name} static map",
            lambda: self.geocoder.static_map_url(center, markers),
        )

    def nearby_services(self, point: Coordinate) -> Dict[str, List[Dict[str, Any]]]:
        """Closest hospitals (3) and police stations (2) within 2 km."""
        services: Dict[str, List[Dict[str, Any]]] = {}
        for category, limit in NEARBY_LIMITS.items():
            places: List[Place] = self.runner.run(
                f"{self.geocoder.name} nearby {category}",
                self.geocoder.nearby_places, point, NEARBY_SEARCH_RADIUS_M, category,
                default=[],
            ) or []
            services[category] = [p.to_dict() for p in places[:limit]]
        return services
