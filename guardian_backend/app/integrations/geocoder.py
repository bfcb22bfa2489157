"""
geocoder.py — Address / map / places provider boundary.

The dispatch core never depends on a specific maps vendor; it talks to a
``Geocoder``:

    reverse_geocode(point)                     → GeoAddress | None
    static_map_url(center, markers, ...)       → str | None
    nearby_places(center, radius_m, category)  → list[Place]

Implementations:
    NullGeocoder        — no provider configured; everything is empty
    GoogleMapsGeocoder  — Google Maps web services over httpx, with an
                          optional Redis cache for reverse geocodes

Provider failures surface as ``UpstreamUnavailable``; callers in the core
treat every geocoder call as best-effort.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from guardian_backend.app.core.cache import GeocodeCache
from guardian_backend.app.core.errors import UpstreamUnavailable, ValidationError
from guardian_backend.app.spatial.radius_utils import Coordinate, distance_m

logger = logging.getLogger(__name__)


@dataclass
class GeoAddress:
    formatted_address: str
    place_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"formatted_address": self.formatted_address, "place_id": self.place_id}


@dataclass
class Place:
    name: str
    place_id: str
    coordinate: Coordinate
    address: Optional[str] = None
    distance_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "place_id": self.place_id,
            "location": {"type": "Point", "coordinates": self.coordinate.to_lnglat()},
            "address": self.address,
            "distance_m": round(self.distance_m, 1) if self.distance_m is not None else None,
        }


@dataclass
class MapMarker:
    coordinate: Coordinate
    color: str = "red"
    label: str = ""


class Geocoder(ABC):
    """Abstract maps provider."""

    name = "geocoder"

    @abstractmethod
    def reverse_geocode(self, point: Coordinate) -> Optional[GeoAddress]:
        pass

    @abstractmethod
    def static_map_url(
        self,
        center: Coordinate,
        markers: Sequence[MapMarker] = (),
        *,
        zoom: int = 15,
        size: str = "600x300",
    ) -> Optional[str]:
        pass

    @abstractmethod
    def nearby_places(
        self, center: Coordinate, radius_m: float, category: str,
    ) -> List[Place]:
        pass

    def close(self) -> None:
        pass


class NullGeocoder(Geocoder):
    """Used when no maps provider is configured."""

    name = "none"

    def reverse_geocode(self, point: Coordinate) -> Optional[GeoAddress]:
        return None

    def static_map_url(self, center, markers=(), *, zoom=15, size="600x300") -> Optional[str]:
        return None

    def nearby_places(self, center, radius_m, category) -> List[Place]:
        return []


class GoogleMapsGeocoder(Geocoder):
    """
    Google Maps Geocoding, Places and Static Maps.

    Parameters
    ----------
    api_key : str
        Maps platform key.
    base_url : str
        ``https://maps.googleapis.com/maps/api`` unless proxied.
    timeout : float
        Per-request timeout in seconds.
    cache : GeocodeCache | None
        Reverse-geocode cache; None disables caching.
    """

    name = "google"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://maps.googleapis.com/maps/api",
        timeout: float = 5.0,
        cache: Optional[GeocodeCache] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.get(
                f"{self.base_url}/{path}", params={**params, "key": self.api_key},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(self.name, str(e), path=path) from e
        except ValueError as e:
            raise UpstreamUnavailable(self.name, "invalid JSON response", path=path) from e

        status = data.get("status", "OK")
        if status not in ("OK", "ZERO_RESULTS"):
            raise UpstreamUnavailable(
                self.name, data.get("error_message", status), path=path, status=status,
            )
        return data

    def reverse_geocode(self, point: Coordinate) -> Optional[GeoAddress]:
        cache_key = f"{point.latitude:.5f}:{point.longitude:.5f}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Geocode cache HIT: %s", cache_key)
                return GeoAddress(**cached)

        data = self._get(
            "geocode/json", {"latlng": f"{point.latitude},{point.longitude}"},
        )
        results = data.get("results") or []
        if not results:
            return None

        address = GeoAddress(
            formatted_address=results[0].get("formatted_address", ""),
            place_id=results[0].get("place_id"),
        )
        if self.cache is not None:
            self.cache.set(cache_key, address.to_dict())
        return address

    def static_map_url(
        self,
        center: Coordinate,
        markers: Sequence[MapMarker] = (),
        *,
        zoom: int = 15,
        size: str = "600x300",
    ) -> Optional[str]:
        url = (
            f"{self.base_url}/staticmap?center={center.latitude},{center.longitude}"
            f"&zoom={zoom}&size={size}&key={self.api_key}"
        )
        for m in markers:
            label = f"|label:{m.label}" if m.label else ""
            url += (
                f"&markers=color:{m.color}{label}"
                f"|{m.coordinate.latitude},{m.coordinate.longitude}"
            )
        return url

    def nearby_places(
        self, center: Coordinate, radius_m: float, category: str,
    ) -> List[Place]:
        data = self._get(
            "place/nearbysearch/json",
            {
                "location": f"{center.latitude},{center.longitude}",
                "radius": int(radius_m),
                "type": category,
            },
        )
        places = []
        for item in data.get("results") or []:
            try:
                loc = item["geometry"]["location"]
                coord = Coordinate(latitude=float(loc["lat"]), longitude=float(loc["lng"]))
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping malformed place result: %s", e)
                continue
            places.append(Place(
                name=item.get("name", ""),
                place_id=item.get("place_id", ""),
                coordinate=coord,
                address=item.get("vicinity"),
                distance_m=distance_m(center, coord),
            ))
        places.sort(key=lambda p: p.distance_m or 0.0)
        return places


def create_geocoder(
    provider: str,
    *,
    api_key: Optional[str] = None,
    base_url: str = "https://maps.googleapis.com/maps/api",
    timeout: float = 5.0,
    cache: Optional[GeocodeCache] = None,
) -> Geocoder:
    """Pick the geocoder implementation for ``provider``."""
    if provider == "google":
        if not api_key:
            logger.warning("GEOCODER_PROVIDER=google without GOOGLE_MAPS_API_KEY; geocoding disabled")
            return NullGeocoder()
        return GoogleMapsGeocoder(api_key, base_url=base_url, timeout=timeout, cache=cache)
    return NullGeocoder()
