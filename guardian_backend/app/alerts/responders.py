"""
responders.py — Responder availability management.

Responders toggle themselves between ``available`` and ``offline``;
``busy`` belongs to the matcher (claim) and the lifecycle manager
(release) and can never be set or left through this service.

A sweep marks available responders offline when their heartbeat is
older than RESPONDER_STALE_AFTER_SECONDS (15 min by default). Busy
responders are never swept.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Sequence

from guardian_backend.app.alerts.models import (
    ResponderAvailability,
    ResponderStatus,
    _now,
    parse_enum,
)
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from guardian_backend.app.spatial.geo_index import GeoHit
from guardian_backend.app.spatial.radius_utils import AVERAGE_SPEED_KMH, Coordinate
from guardian_backend.app.storage.repository import DispatchStore

logger = logging.getLogger(__name__)

_SELF_SERVICE = (ResponderStatus.AVAILABLE, ResponderStatus.OFFLINE)


class ResponderAvailabilityService:
    def __init__(self, store: DispatchStore, settings: Settings):
        self.store = store
        self.settings = settings

    def register_responder(
        self,
        responder_id: str,
        vehicle_type: Optional[str] = None,
        coordinates: Optional[Sequence[float]] = None,
        is_active: bool = True,
    ) -> ResponderAvailability:
        """Create or refresh a responder's availability row.

        New responders start ``offline``; an existing row keeps its status
        and assignment.
        """
        if not responder_id:
            raise ValidationError("responder_id is required", field="responder_id")
        if vehicle_type is not None and vehicle_type.lower() not in AVERAGE_SPEED_KMH:
            raise ValidationError(
                f"Unknown vehicle type '{vehicle_type}'", field="vehicle_type",
            )
        point = Coordinate.from_lnglat(coordinates) if coordinates is not None else None
        now = _now()

        with self.store.unit_of_work() as uow:
            responder = uow.get_responder(responder_id) or ResponderAvailability(
                responder_id=responder_id, last_ping=now,
            )
            responder.is_active = bool(is_active)
            if vehicle_type is not None:
                responder.vehicle_type = vehicle_type.lower()
            if point is not None:
                responder.current_location = point
                responder.location_updated_at = now
            uow.upsert_responder(responder)

        logger.info(
            "Responder %s registered (%s)", responder_id, responder.status.value,
            extra={"responder_id": responder_id},
        )
        return responder

    def set_status(self, responder_id: str, status: str) -> ResponderAvailability:
        requested = parse_enum(ResponderStatus, status, field="status")
        if requested not in _SELF_SERVICE:
            raise ValidationError(
                "Status must be 'available' or 'offline'", field="status",
            )

        with self.store.unit_of_work() as uow:
            current = uow.get_responder(responder_id)
            if current is None:
                raise NotFoundError("Responder", responder_id=responder_id)
            if not uow.set_responder_status(
                responder_id, requested, expected=_SELF_SERVICE, now=_now(),
            ):
                raise InvalidTransitionError(
                    current.status.value, requested.value, resource="Responder",
                )
            responder = uow.get_responder(responder_id)

        logger.info(
            "Responder %s → %s", responder_id, requested.value,
            extra={"responder_id": responder_id, "status": requested.value},
        )
        return responder

    def heartbeat(self, responder_id: str) -> ResponderAvailability:
        with self.store.unit_of_work() as uow:
            if not uow.heartbeat(responder_id, _now()):
                raise NotFoundError("Responder", responder_id=responder_id)
            return uow.get_responder(responder_id)

    def get(self, responder_id: str) -> ResponderAvailability:
        responder = self.store.get_responder(responder_id)
        if responder is None:
            raise NotFoundError("Responder", responder_id=responder_id)
        return responder

    def list_available_near(
        self, coordinates: Sequence[float], radius_m: float,
    ) -> List[GeoHit[ResponderAvailability]]:
        """Available responders around a point, nearest first."""
        center = Coordinate.from_lnglat(coordinates)
        with self.store.unit_of_work() as uow:
            return uow.find_available_responders_near(center, radius_m)

    def mark_stale_offline(self, stale_after_seconds: Optional[float] = None) -> List[str]:
        """Take silent available responders offline; returns their ids."""
        seconds = (
            self.settings.RESPONDER_STALE_AFTER_SECONDS
            if stale_after_seconds is None else stale_after_seconds
        )
        cutoff = _now() - timedelta(seconds=seconds)
        with self.store.unit_of_work() as uow:
            swept = uow.mark_stale_offline(cutoff)
        if swept:
            logger.info("Marked %d stale responder(s) offline", len(swept))
        return swept
