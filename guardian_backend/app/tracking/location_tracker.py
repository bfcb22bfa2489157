"""
location_tracker.py — Location pings, live tracking and history.

Every ping:
    1. is validated (lng-first coordinates, accuracy ≥ 0, battery 0–100)
    2. lands in the append-only location history
    3. moves the subject's last-known position (user) or the
       responder's current location + heartbeat (responder)
    4. when sent by a participant of a live alert, refreshes the alert's
       tracking snapshot, recomputes distance / ETA and runs the proximity
       check for each responder it concerns

A ping naming an alert the subject does not belong to is still applied
(steps 2 and 3); only the alert's tracking is left untouched.

Steps 2–4 share one unit of work, under the alert's keyed lock when an
alert id is given.

═══════════════════════════════════════════════════════════════════════════
PROXIMITY DEBOUNCE
═══════════════════════════════════════════════════════════════════════════

    distance (km)
        │
    1.2 ┼ ─ ─ ─ ─ ─ ─ ─ ─ ─ ─ ─ ─  re-arm above this line
        │        ╲          ╱
    1.0 ┼ ─ ─ ─ ─ ╲─ ─ ─ ─ ╱─ ─ ─  notify once when crossing below
        │          ╲______╱
        └────────────────────────▶ pings

A single ``proximity`` intent is emitted per responder per approach.
Jitter around 1.0 km cannot re-trigger it; the flag lives on the
responder's assignment and only clears once that responder has moved
back out beyond the re-arm distance.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from guardian_backend.app.alerts.geo_fence import GeofenceEvaluator, GeofenceMatch
from guardian_backend.app.alerts.models import (
    LocationHistoryRecord,
    NotificationIntent,
    SubjectRole,
    TrackingSnapshot,
    UserLocation,
    _now,
    parse_enum,
)
from guardian_backend.app.alerts.notifications import NotificationDispatcher, proximity_intent
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.errors import ForbiddenError, NotFoundError, ValidationError
from guardian_backend.app.core.locks import KeyedLock
from guardian_backend.app.core.logging_config import bind_context
from guardian_backend.app.integrations.enrichment import LocationEnricher
from guardian_backend.app.integrations.geocoder import MapMarker
from guardian_backend.app.spatial.radius_utils import (
    Coordinate,
    estimate_arrival,
    haversine_km,
    validate_accuracy,
)
from guardian_backend.app.storage.repository import DispatchStore

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Location accuracy scoring
# ═══════════════════════════════════════════════════════════════════════════

TRUSTWORTHY_CONFIDENCE = 70


@dataclass
class AccuracyCheck:
    confidence: int
    issues: List[str] = field(default_factory=list)

    @property
    def is_trustworthy(self) -> bool:
        return self.confidence > TRUSTWORTHY_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "is_trustworthy": self.is_trustworthy,
            "issues": self.issues,
        }


def verify_location_accuracy(point: Coordinate, accuracy_m: float) -> AccuracyCheck:
    """
    Heuristic confidence score (0–100) for a GPS fix.

        accuracy > 1000 m          −30
        accuracy > 500 m           −15
        |lat| > 85°                −10
        (0, 0) "null island"       −40

    A fix scoring 70 or below is flagged as untrustworthy.
    """
    confidence = 100
    issues: List[str] = []

    if accuracy_m > 1000:
        confidence -= 30
        issues.append("Low GPS accuracy")
    elif accuracy_m > 500:
        confidence -= 15
        issues.append("Moderate GPS accuracy")

    if abs(point.latitude) > 85:
        confidence -= 10
        issues.append("Extreme latitude")

    if abs(point.latitude) < 0.0001 and abs(point.longitude) < 0.0001:
        confidence -= 40
        issues.append("Coordinates at null island (0, 0)")

    return AccuracyCheck(confidence=max(confidence, 0), issues=issues)


# ═══════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════

def _point(coord: Optional[Coordinate]) -> Optional[Dict[str, Any]]:
    return {"type": "Point", "coordinates": coord.to_lnglat()} if coord else None


@dataclass
class LocationUpdateResult:
    applied: bool = True
    correlated_alert_updated: bool = False
    distance_km: Optional[float] = None
    estimated_arrival: Optional[str] = None
    proximity_notified: bool = False
    trusted_location: Optional[GeofenceMatch] = None
    accuracy: Optional[AccuracyCheck] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "correlated_alert_updated": self.correlated_alert_updated,
            "distance_km": round(self.distance_km, 3) if self.distance_km is not None else None,
            "estimated_arrival": self.estimated_arrival,
            "proximity_notified": self.proximity_notified,
            "trusted_location": (
                self.trusted_location.to_dict() if self.trusted_location else None
            ),
            "accuracy": self.accuracy.to_dict() if self.accuracy else None,
        }


@dataclass
class LiveTracking:
    alert_id: str
    status: str
    user_location: Optional[Coordinate] = None
    responder_location: Optional[Coordinate] = None
    responder_id: Optional[str] = None
    user_address: Optional[str] = None
    responder_address: Optional[str] = None
    distance_km: Optional[float] = None
    estimated_arrival: Optional[str] = None
    last_updated: Optional[datetime] = None
    static_map_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status,
            "user_location": _point(self.user_location),
            "responder_location": _point(self.responder_location),
            "responder_id": self.responder_id,
            "user_address": self.user_address,
            "responder_address": self.responder_address,
            "distance_km": round(self.distance_km, 3) if self.distance_km is not None else None,
            "estimated_arrival": self.estimated_arrival,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "static_map_url": self.static_map_url,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Tracker
# ═══════════════════════════════════════════════════════════════════════════

class LocationTracker:
    """Applies location pings and serves live tracking views."""

    def __init__(
        self,
        store: DispatchStore,
        dispatcher: NotificationDispatcher,
        geofence: GeofenceEvaluator,
        enricher: LocationEnricher,
        settings: Settings,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.geofence = geofence
        self.enricher = enricher
        self.settings = settings
        self.locks = locks or KeyedLock()

    def update_location(
        self,
        subject_id: str,
        role: str,
        coordinates: Sequence[float],
        accuracy: float = 0.0,
        alert_id: Optional[str] = None,
        battery_level: Optional[int] = None,
    ) -> LocationUpdateResult:
        """
        Record a ping and, when ``alert_id`` is given, update that alert's
        live tracking.

        A subject that is not a participant of ``alert_id`` still has its
        ping recorded; ``correlated_alert_updated`` is then False.

        Raises
        ------
        ValidationError
            Bad coordinates, accuracy, role or battery level.
        NotFoundError
            Unknown responder, or unknown ``alert_id``.
        """
        if not subject_id:
            raise ValidationError("subject_id is required", field="subject_id")
        subject_role = parse_enum(SubjectRole, role, field="role")
        point = Coordinate.from_lnglat(coordinates)
        accuracy_m = validate_accuracy(accuracy)
        if battery_level is not None and (
            isinstance(battery_level, bool)
            or not isinstance(battery_level, int)
            or not 0 <= battery_level <= 100
        ):
            raise ValidationError("Battery level must be an integer 0–100", field="battery_level")

        check = verify_location_accuracy(point, accuracy_m)
        if not check.is_trustworthy:
            logger.warning(
                "Suspicious fix from %s (confidence %d): %s",
                subject_id, check.confidence, ", ".join(check.issues),
                extra={"subject_id": subject_id},
            )

        result = LocationUpdateResult(accuracy=check)
        intents: List[NotificationIntent] = []
        guard = self.locks.hold(alert_id) if alert_id else contextlib.nullcontext()

        with guard, bind_context(alert_id=alert_id, subject_id=subject_id):
            with self.store.unit_of_work() as uow:
                now = _now()
                responder = None
                if subject_role == SubjectRole.RESPONDER:
                    responder = uow.get_responder(subject_id)
                    if responder is None:
                        raise NotFoundError("Responder", responder_id=subject_id)
                    uow.touch_responder_location(subject_id, point, now)
                else:
                    uow.upsert_user_location(UserLocation(
                        user_id=subject_id, coordinate=point,
                        accuracy_m=accuracy_m, updated_at=now,
                    ))

                alert = None
                participant = False
                if alert_id:
                    alert = uow.get_alert(alert_id, for_update=True)
                    if alert is None:
                        raise NotFoundError("Alert", alert_id=alert_id)
                    participant = self._may_track(alert, subject_id, subject_role)
                    if not participant:
                        logger.warning(
                            "Ping from %s names %s but it is not a participant",
                            subject_id, alert_id,
                            extra={"subject_id": subject_id, "alert_id": alert_id},
                        )

                uow.append_history(LocationHistoryRecord(
                    subject_id=subject_id,
                    role=subject_role,
                    coordinate=point,
                    accuracy_m=accuracy_m,
                    alert_id=alert_id if participant else None,
                    battery_level=battery_level,
                    timestamp=now,
                ))

                if participant and not alert.is_terminal:
                    intents = self._track(uow, alert, subject_id, subject_role, point, now,
                                          responder, result)
                    result.correlated_alert_updated = True

                if subject_role == SubjectRole.USER:
                    fence = self.geofence.evaluate_point(subject_id, point, uow=uow)
                    result.trusted_location = fence.matched_location

        for intent in intents:
            logger.info(
                "Responder %s within %.2f km of user on %s",
                intent.payload["responder_id"], intent.payload["distance_km"], alert_id,
                extra={"alert_id": alert_id, "responder_id": intent.payload["responder_id"],
                       "distance_km": intent.payload["distance_km"]},
            )
        self.dispatcher.dispatch(intents)
        return result

    def _track(
        self, uow, alert, subject_id: str, role: SubjectRole, point: Coordinate,
        now: datetime, responder, result: LocationUpdateResult,
    ) -> List[NotificationIntent]:
        """
        Move one side of the alert's tracking and re-measure.

        A responder ping re-measures only that responder; a user ping
        re-measures every responder that has reported a position. Each
        assignment carries its own approach flag, re-armed only by that
        responder's distance.
        """
        tracking = alert.tracking or TrackingSnapshot()
        tracking.last_updated = now
        if role == SubjectRole.USER:
            tracking.last_user_location = point
            moved = [a for a in alert.assigned_responders if a.last_location is not None]
        else:
            tracking.last_responder_location = point
            tracking.last_responder_id = subject_id
            mine = alert.assignment_for(subject_id)
            mine.last_location = point
            moved = [mine]

        intents: List[NotificationIntent] = []
        user_loc = tracking.last_user_location
        if user_loc is not None:
            nearest = None
            for assignment in moved:
                distance = haversine_km(user_loc, assignment.last_location)
                if responder is not None and responder.responder_id == assignment.responder_id:
                    other = responder
                else:
                    other = uow.get_responder(assignment.responder_id)
                vehicle = other.vehicle_type if other else None
                eta = estimate_arrival(distance, vehicle) if vehicle else None

                intent = self._approach(alert, assignment, distance, eta)
                if intent is not None:
                    intents.append(intent)
                if nearest is None or distance < nearest[0]:
                    nearest = (distance, eta)

            if nearest is not None:
                result.distance_km, result.estimated_arrival = nearest
            result.proximity_notified = bool(intents)

        for assignment in moved:
            uow.update_assignment_tracking(alert.alert_id, assignment)
        uow.update_tracking(alert.alert_id, tracking)
        return intents

    def _approach(
        self, alert, assignment, distance_km: float, estimated_arrival: Optional[str],
    ) -> Optional[NotificationIntent]:
        # Hysteresis: notify below the threshold, re-arm only above the re-arm band.
        if distance_km < self.settings.PROXIMITY_THRESHOLD_KM and not assignment.proximity_notified:
            assignment.proximity_notified = True
            return proximity_intent(
                alert, assignment.responder_id, distance_km, estimated_arrival,
            )
        if distance_km > self.settings.PROXIMITY_REARM_KM and assignment.proximity_notified:
            assignment.proximity_notified = False
        return None

    @staticmethod
    def _may_track(alert, subject_id: str, role: SubjectRole) -> bool:
        if role == SubjectRole.USER:
            return subject_id == alert.user_id
        return alert.assignment_for(subject_id) is not None

    def get_live_tracking(self, alert_id: str, requesting_subject_id: str) -> LiveTracking:
        """Both positions, distance, ETA and a map, for participants only."""
        with self.store.unit_of_work() as uow:
            alert = uow.get_alert(alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            if not alert.is_participant(requesting_subject_id):
                raise ForbiddenError()
            tracking = alert.tracking or TrackingSnapshot()
            responder = (
                uow.get_responder(tracking.last_responder_id)
                if tracking.last_responder_id else None
            )

        user_loc = tracking.last_user_location or alert.location.coordinate
        resp_loc = tracking.last_responder_location
        view = LiveTracking(
            alert_id=alert.alert_id,
            status=alert.status.value,
            user_location=user_loc,
            responder_location=resp_loc,
            responder_id=tracking.last_responder_id,
            last_updated=tracking.last_updated or alert.updated_at,
        )

        markers = [MapMarker(user_loc, "red", "U")]
        if resp_loc is not None:
            view.distance_km = haversine_km(user_loc, resp_loc)
            if responder is not None and responder.vehicle_type:
                view.estimated_arrival = estimate_arrival(view.distance_km, responder.vehicle_type)
            markers.append(MapMarker(resp_loc, "blue", "R"))

        view.user_address = self.enricher.describe(user_loc)
        view.responder_address = self.enricher.describe(resp_loc)
        view.static_map_url = self.enricher.map_url(user_loc, markers)
        return view

    # ── History ──

    def get_subject_history(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[LocationHistoryRecord]:
        """Newest first."""
        with self.store.unit_of_work() as uow:
            return uow.history_for_subject(
                subject_id, start=start, end=end,
                limit=limit or self.settings.LOCATION_HISTORY_LIMIT,
            )

    def get_alert_history(
        self, alert_id: str, requesting_subject_id: str,
    ) -> List[LocationHistoryRecord]:
        """Every ping correlated with an alert, oldest first."""
        with self.store.unit_of_work() as uow:
            alert = uow.get_alert(alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            if not alert.is_participant(requesting_subject_id):
                raise ForbiddenError()
            return uow.history_for_alert(alert_id)

    def distance_traveled(
        self, subject_id: str, start: datetime, end: datetime,
    ) -> Dict[str, Any]:
        """Total path length and mean segment speed between two instants."""
        if end < start:
            raise ValidationError("end must not precede start", field="end")
        with self.store.unit_of_work() as uow:
            records = uow.history_for_subject(
                subject_id, start=start, end=end, limit=None, newest_first=False,
            )

        total = 0.0
        speeds: List[float] = []
        for prev, curr in zip(records, records[1:]):
            leg = haversine_km(prev.coordinate, curr.coordinate)
            total += leg
            hours = (curr.timestamp - prev.timestamp).total_seconds() / 3600.0
            if hours > 0:
                speeds.append(leg / hours)

        return {
            "subject_id": subject_id,
            "total_distance_km": round(total, 2),
            "average_speed_kmh": round(sum(speeds) / len(speeds), 2) if speeds else 0.0,
            "points": len(records),
        }
