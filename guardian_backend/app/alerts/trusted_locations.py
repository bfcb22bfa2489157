"""
trusted_locations.py — Manage a user's trusted locations.

Rules:
    • name is required (1–100 characters, trimmed)
    • radius_m defaults to 100 and must stay within 10–1000 m
    • a location owned by someone else is reported as not found
    • address and map thumbnail are looked up best-effort before the write
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from guardian_backend.app.alerts.models import TrustedLocation, _generate_id, _now
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.errors import NotFoundError, ValidationError
from guardian_backend.app.integrations.enrichment import LocationEnricher
from guardian_backend.app.spatial.radius_utils import Coordinate
from guardian_backend.app.storage.repository import DispatchStore

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100

_UPDATABLE = {"name", "coordinates", "radius_m", "is_home", "is_work", "notes"}


class TrustedLocationService:
    def __init__(self, store: DispatchStore, enricher: LocationEnricher, settings: Settings):
        self.store = store
        self.enricher = enricher
        self.settings = settings

    # ── Validation ──

    def _name(self, name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Location name is required", field="name")
        name = name.strip()
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Location name must be at most {MAX_NAME_LENGTH} characters", field="name",
            )
        return name

    def _radius(self, radius_m: Any) -> float:
        lo = self.settings.TRUSTED_LOCATION_MIN_RADIUS_M
        hi = self.settings.TRUSTED_LOCATION_MAX_RADIUS_M
        if (
            isinstance(radius_m, bool)
            or not isinstance(radius_m, (int, float))
            or not math.isfinite(radius_m)
            or not lo <= radius_m <= hi
        ):
            raise ValidationError(
                f"Radius must be between {lo:g} and {hi:g} metres", field="radius_m",
            )
        return float(radius_m)

    # ── Operations ──

    def add_trusted_location(
        self,
        user_id: str,
        name: str,
        coordinates: Sequence[float],
        radius_m: Optional[float] = None,
        is_home: bool = False,
        is_work: bool = False,
        notes: Optional[str] = None,
    ) -> TrustedLocation:
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        now = _now()
        location = TrustedLocation(
            location_id=_generate_id("TLC"),
            user_id=user_id,
            name=self._name(name),
            coordinate=Coordinate.from_lnglat(coordinates),
            radius_m=self._radius(
                self.settings.TRUSTED_LOCATION_DEFAULT_RADIUS_M if radius_m is None else radius_m
            ),
            is_home=bool(is_home),
            is_work=bool(is_work),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self._fill_enrichment(location)

        with self.store.unit_of_work() as uow:
            uow.add_trusted_location(location)

        logger.info(
            "Trusted location %s '%s' added for %s (r=%.0f m)",
            location.location_id, location.name, user_id, location.radius_m,
            extra={"location_id": location.location_id, "user_id": user_id},
        )
        return location

    def update_trusted_location(
        self, user_id: str, location_id: str, changes: Dict[str, Any],
    ) -> TrustedLocation:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(
                f"Unknown fields: {', '.join(sorted(unknown))}", field="changes",
            )

        with self.store.unit_of_work() as uow:
            location = uow.get_trusted_location(location_id)
            if location is None or location.user_id != user_id:
                raise NotFoundError("TrustedLocation", location_id=location_id)

        moved = False
        if "name" in changes:
            location.name = self._name(changes["name"])
        if "coordinates" in changes:
            location.coordinate = Coordinate.from_lnglat(changes["coordinates"])
            moved = True
        if "radius_m" in changes:
            location.radius_m = self._radius(changes["radius_m"])
        if "is_home" in changes:
            location.is_home = bool(changes["is_home"])
        if "is_work" in changes:
            location.is_work = bool(changes["is_work"])
        if "notes" in changes:
            location.notes = changes["notes"]
        location.updated_at = _now()

        if moved:
            location.address = None
            location.static_map_url = None
            self._fill_enrichment(location)

        with self.store.unit_of_work() as uow:
            if not uow.save_trusted_location(location):
                raise NotFoundError("TrustedLocation", location_id=location_id)

        logger.info(
            "Trusted location %s updated", location_id,
            extra={"location_id": location_id, "user_id": user_id},
        )
        return location

    def delete_trusted_location(self, user_id: str, location_id: str) -> None:
        with self.store.unit_of_work() as uow:
            location = uow.get_trusted_location(location_id)
            if location is None or location.user_id != user_id:
                raise NotFoundError("TrustedLocation", location_id=location_id)
            uow.delete_trusted_location(location_id)
        logger.info(
            "Trusted location %s deleted", location_id,
            extra={"location_id": location_id, "user_id": user_id},
        )

    def list_trusted_locations(self, user_id: str) -> List[TrustedLocation]:
        return self.store.list_trusted_locations(user_id)

    def _fill_enrichment(self, location: TrustedLocation) -> None:
        enrichment = self.enricher.enrich_point(location.coordinate, marker_label="T")
        location.address = enrichment.formatted_address
        location.static_map_url = enrichment.static_map_url
