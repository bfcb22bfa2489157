"""
lifecycle.py — Alert lifecycle orchestration.

This is the central coordinator that:
    1. Validates and records a new alert
    2. Optionally suppresses dispatch inside a trusted location
    3. Matches and claims responders in the same unit of work
    4. Drives status transitions through the transition graph
    5. Frees responders when an alert reaches a terminal state
    6. Emits notification intents after every commit

═══════════════════════════════════════════════════════════════════════════
CREATE FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Validate input  │  lng-first coordinates, accuracy ≥ 0, type
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Geofence        │  (only with GEOFENCE_SUPPRESS_DISPATCH)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────────────────────────────┐
    │  3. One unit of work                        │
    │     insert alert · match + claim responders │
    │     history record · user location (SAVEPOINT)
    └─────────┬───────────────────────────────────┘
              ▼  commit
    ┌─────────────────────┐
    │  4. Intents         │  new-assignment ×N, status-update to user,
    │                     │  no-responders to escalation target if N = 0
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  5. Enrichment      │  address, place id, static map (best-effort)
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
TRANSITIONS
═══════════════════════════════════════════════════════════════════════════

Every mutation of an existing alert holds that alert's keyed lock for the
whole unit of work, and status changes are compare-and-set on top of it:

    lock(alert_id) → BEGIN → read → CAS status → release responders → COMMIT

Entering ``resolved`` or ``cancelled`` frees each busy responder still
pointing at the alert, in the same transaction as the status change.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from guardian_backend.app.alerts.geo_fence import GeofenceEvaluator
from guardian_backend.app.alerts.matcher import ResponderMatcher
from guardian_backend.app.alerts.models import (
    Alert,
    AlertLocation,
    AlertMessage,
    AlertStatus,
    AlertType,
    AssignmentStatus,
    LocationHistoryRecord,
    MessageType,
    SubjectRole,
    TrackingSnapshot,
    UserLocation,
    _generate_id,
    _now,
    can_transition,
    parse_enum,
)
from guardian_backend.app.alerts.notifications import (
    NotificationDispatcher,
    new_assignment_intent,
    no_responders_intent,
    status_update_intent,
    transition_intents,
)
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from guardian_backend.app.core.locks import KeyedLock
from guardian_backend.app.core.logging_config import bind_context
from guardian_backend.app.integrations.enrichment import LocationEnricher
from guardian_backend.app.spatial.radius_utils import Coordinate, validate_accuracy
from guardian_backend.app.storage.repository import DispatchStore, UnitOfWork

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class AlertLifecycleManager:
    """
    Owns every state change of an alert.

    Parameters
    ----------
    store : DispatchStore
        Persistence (units of work).
    matcher : ResponderMatcher
        Candidate selection and claims.
    dispatcher : NotificationDispatcher
        Receives intents after commit.
    geofence : GeofenceEvaluator
        Trusted-location checks for dispatch suppression.
    enricher : LocationEnricher
        Best-effort address / map enrichment.
    settings : Settings
        Escalation target, suppression switch, list limits.
    locks : KeyedLock
        Per-alert serialisation, shared with the location tracker.
    """

    def __init__(
        self,
        store: DispatchStore,
        matcher: ResponderMatcher,
        dispatcher: NotificationDispatcher,
        geofence: GeofenceEvaluator,
        enricher: LocationEnricher,
        settings: Settings,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.geofence = geofence
        self.enricher = enricher
        self.settings = settings
        self.locks = locks or KeyedLock()

    # ═══════════════════════════════════════════════════════════════════
    # Creation
    # ═══════════════════════════════════════════════════════════════════

    def create_alert(
        self,
        user_id: str,
        coordinates: Sequence[float],
        accuracy: float = 0.0,
        alert_type: str = "panic",
        extra: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """
        Record an alert and dispatch responders to it.

        Parameters
        ----------
        user_id : str
            Owner of the alert.
        coordinates : [lng, lat]
            Where the user is.
        accuracy : float
            Reported accuracy radius in metres.
        alert_type : str
            ``panic`` | ``fall-detection`` | ``timer-expired``.
        extra : dict | None
            Free-form client metadata (device info etc.).

        Returns
        -------
        Alert
            Persisted alert with its assignment list. Zero assignments is
            a valid outcome (a ``no-responders`` intent is emitted).
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        point = Coordinate.from_lnglat(coordinates, field="location.coordinates")
        accuracy_m = validate_accuracy(accuracy, field="location.accuracy")
        kind = parse_enum(AlertType, alert_type, field="alert_type")

        now = _now()
        alert = Alert(
            alert_id=_generate_id(),
            user_id=user_id,
            location=AlertLocation(coordinate=point, accuracy_m=accuracy_m),
            alert_type=kind,
            tracking=TrackingSnapshot(last_user_location=point, last_updated=now),
            created_at=now,
            updated_at=now,
            extra=dict(extra or {}),
        )

        if self.settings.GEOFENCE_SUPPRESS_DISPATCH:
            fence = self.geofence.evaluate_point(user_id, point)
            if fence.is_inside:
                alert.suppressed_by = fence.matched_location.name

        claimed = []
        with self.store.unit_of_work() as uow:
            uow.insert_alert(alert)
            if alert.suppressed_by is None:
                claimed = self.matcher.assign_with_distances(uow, alert.alert_id, point)
                uow.add_assignments(alert.alert_id, [a for a, _ in claimed])
            uow.append_history(LocationHistoryRecord(
                subject_id=user_id,
                role=SubjectRole.USER,
                coordinate=point,
                accuracy_m=accuracy_m,
                alert_id=alert.alert_id,
                timestamp=now,
            ))
            self._save_user_location(uow, UserLocation(
                user_id=user_id, coordinate=point, accuracy_m=accuracy_m, updated_at=now,
            ))

        alert.assigned_responders = [a for a, _ in claimed]
        logger.info(
            "Alert %s created for %s: %d responder(s) assigned",
            alert.alert_id, user_id, len(claimed),
            extra={
                "alert_id": alert.alert_id,
                "user_id": user_id,
                "assigned_count": len(claimed),
            },
        )

        intents = [new_assignment_intent(alert, a.responder_id, d) for a, d in claimed]
        if alert.suppressed_by is not None:
            logger.info(
                "Dispatch for %s suppressed by trusted location '%s'",
                alert.alert_id, alert.suppressed_by,
                extra={"alert_id": alert.alert_id},
            )
            intents.append(status_update_intent(
                alert, user_id, "dispatch-suppressed", trusted_location=alert.suppressed_by,
            ))
        else:
            intents.append(status_update_intent(
                alert, user_id, "alert-sent", assigned_count=len(claimed),
            ))
            if not claimed:
                logger.warning(
                    "No responders available for %s", alert.alert_id,
                    extra={"alert_id": alert.alert_id},
                )
                intents.append(no_responders_intent(alert, self.settings.ESCALATION_TARGET_ID))
        self.dispatcher.dispatch(intents)

        self._enrich(alert)
        return alert

    def _save_user_location(self, uow: UnitOfWork, location: UserLocation) -> None:
        """Last-known location is secondary; its failure must not undo the alert."""
        try:
            with uow.savepoint():
                uow.upsert_user_location(location)
        except SQLAlchemyError as e:
            logger.warning(
                "Could not update last location for %s: %s", location.user_id, e,
                extra={"user_id": location.user_id},
            )

    def _enrich(self, alert: Alert) -> None:
        enrichment = self.enricher.enrich_point(alert.location.coordinate, marker_label="U")
        if not (enrichment.formatted_address or enrichment.static_map_url):
            return
        try:
            with self.store.unit_of_work() as uow:
                uow.update_enrichment(
                    alert.alert_id,
                    formatted_address=enrichment.formatted_address,
                    place_id=enrichment.place_id,
                    static_map_url=enrichment.static_map_url,
                )
        except SQLAlchemyError as e:
            logger.warning(
                "Could not store enrichment for %s: %s", alert.alert_id, e,
                extra={"alert_id": alert.alert_id},
            )
            return
        alert.location.formatted_address = enrichment.formatted_address
        alert.location.place_id = enrichment.place_id
        alert.location.static_map_url = enrichment.static_map_url

    # ═══════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════

    def transition_status(
        self,
        alert_id: str,
        new_status: str,
        acting_responder_id: Optional[str] = None,
    ) -> Alert:
        """
        Move an alert along the transition graph.

        Raises
        ------
        NotFoundError
            Unknown alert.
        InvalidTransitionError
            Target not reachable from the current status (self-transitions
            included), or another writer changed the status first.
        """
        requested = parse_enum(AlertStatus, new_status, field="status")

        with self.locks.hold(alert_id), bind_context(alert_id=alert_id):
            with self.store.unit_of_work() as uow:
                alert = uow.get_alert(alert_id, for_update=True)
                if alert is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                previous = alert.status
                if not can_transition(previous, requested):
                    raise InvalidTransitionError(previous.value, requested.value)

                now = _now()
                if not uow.compare_and_set_status(alert_id, previous, requested, now):
                    raise InvalidTransitionError(previous.value, requested.value)

                if (
                    requested == AlertStatus.ACKNOWLEDGED
                    and acting_responder_id
                    and alert.assignment_for(acting_responder_id) is not None
                ):
                    uow.set_assignment_status(
                        alert_id, acting_responder_id, AssignmentStatus.ENROUTE,
                    )

                released: List[str] = []
                if requested.is_terminal:
                    released = uow.release_responders(alert_id)

                alert = uow.get_alert(alert_id)

        logger.info(
            "Alert %s: %s → %s (%d responder(s) released)",
            alert_id, previous.value, requested.value, len(released),
            extra={"alert_id": alert_id, "status": requested.value},
        )
        self.dispatcher.dispatch(transition_intents(alert, previous))
        return alert

    def add_assignment_status(self, alert_id: str, responder_id: str, status: str) -> Alert:
        """
        Update one responder's progress (assigned → enroute → on-scene).

        Silently ignored when the responder is not assigned or the alert
        is already terminal.
        """
        requested = parse_enum(AssignmentStatus, status, field="status")

        with self.locks.hold(alert_id), bind_context(alert_id=alert_id):
            with self.store.unit_of_work() as uow:
                alert = uow.get_alert(alert_id)
                if alert is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                if alert.is_terminal or alert.assignment_for(responder_id) is None:
                    logger.debug(
                        "Assignment update ignored for %s on %s", responder_id, alert_id,
                        extra={"alert_id": alert_id, "responder_id": responder_id},
                    )
                    return alert

                now = _now()
                uow.set_assignment_status(
                    alert_id, responder_id, requested,
                    arrived_at=now if requested == AssignmentStatus.ON_SCENE else None,
                )
                uow.touch_alert(alert_id, now)
                alert = uow.get_alert(alert_id)

        self.dispatcher.dispatch([status_update_intent(
            alert, alert.user_id, f"responder-{requested.value}", responder_id=responder_id,
        )])
        return alert

    # ═══════════════════════════════════════════════════════════════════
    # Deletion, messages, queries
    # ═══════════════════════════════════════════════════════════════════

    def delete_alert(self, alert_id: str, requesting_user_id: str) -> None:
        """Owner-only removal; a live alert's responders are freed first."""
        with self.locks.hold(alert_id), bind_context(alert_id=alert_id):
            with self.store.unit_of_work() as uow:
                alert = uow.get_alert(alert_id)
                if alert is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                if alert.user_id != requesting_user_id:
                    raise ForbiddenError()
                released = [] if alert.is_terminal else uow.release_responders(alert_id)
                uow.delete_alert(alert_id)

        logger.info(
            "Alert %s deleted by owner (%d responder(s) released)", alert_id, len(released),
            extra={"alert_id": alert_id},
        )
        self.dispatcher.dispatch([
            status_update_intent(alert, rid, "alert-deleted") for rid in released
        ])

    def append_message(
        self,
        alert_id: str,
        sender_id: str,
        content: str,
        message_type: str = "text",
    ) -> Alert:
        kind = parse_enum(MessageType, message_type, field="message_type")
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required", field="content")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message exceeds {MAX_MESSAGE_LENGTH} characters", field="content",
            )

        with self.locks.hold(alert_id), bind_context(alert_id=alert_id):
            with self.store.unit_of_work() as uow:
                alert = uow.get_alert(alert_id)
                if alert is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                if not alert.is_participant(sender_id):
                    raise ForbiddenError()
                message = AlertMessage(sender_id=sender_id, content=text, message_type=kind)
                uow.append_message(alert_id, message)
                uow.touch_alert(alert_id, message.timestamp)
                alert = uow.get_alert(alert_id)

        recipients = [t for t in [alert.user_id, *alert.responder_ids()] if t != sender_id]
        self.dispatcher.dispatch([
            status_update_intent(alert, t, "new-message", sender_id=sender_id) for t in recipients
        ])
        return alert

    def get_alert(self, alert_id: str, requesting_subject_id: Optional[str] = None) -> Alert:
        alert = self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if requesting_subject_id is not None and not alert.is_participant(requesting_subject_id):
            raise ForbiddenError()
        return alert

    def list_user_alerts(
        self, user_id: str, status: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[Alert]:
        st = parse_enum(AlertStatus, status, field="status") if status else None
        with self.store.unit_of_work() as uow:
            return uow.list_alerts_for_user(
                user_id, status=st, limit=limit or self.settings.ALERT_LIST_LIMIT,
            )

    def list_responder_alerts(
        self, responder_id: str, status: Optional[str] = None, limit: Optional[int] = None,
    ) -> List[Alert]:
        st = parse_enum(AlertStatus, status, field="status") if status else None
        with self.store.unit_of_work() as uow:
            return uow.list_alerts_for_responder(
                responder_id, status=st, limit=limit or self.settings.ALERT_LIST_LIMIT,
            )

    def nearby_services(self, alert_id: str, requesting_subject_id: str) -> Dict[str, Any]:
        """Hospitals and police near the alert, for participants only."""
        alert = self.get_alert(alert_id, requesting_subject_id)
        return self.enricher.nearby_services(alert.location.coordinate)

    # ═══════════════════════════════════════════════════════════════════
    # Escalation hook
    # ═══════════════════════════════════════════════════════════════════

    def find_unassigned_alerts(self, older_than_seconds: float = 0.0) -> List[Alert]:
        """Active, unsuppressed alerts that still have nobody assigned."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        with self.store.unit_of_work() as uow:
            return uow.unassigned_active_alerts(cutoff)

    def rematch_alert(self, alert_id: str) -> Alert:
        """Claim additional responders for an active alert."""
        with self.locks.hold(alert_id), bind_context(alert_id=alert_id):
            with self.store.unit_of_work() as uow:
                alert = uow.get_alert(alert_id)
                if alert is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                if alert.status != AlertStatus.ACTIVE or alert.suppressed_by is not None:
                    logger.info(
                        "Rematch skipped for %s (status=%s)", alert_id, alert.status.value,
                        extra={"alert_id": alert_id},
                    )
                    return alert
                claimed = self.matcher.assign_with_distances(
                    uow, alert_id, alert.location.coordinate, exclude=alert.responder_ids(),
                )
                if claimed:
                    uow.add_assignments(alert_id, [a for a, _ in claimed])
                    uow.touch_alert(alert_id, _now())
                alert = uow.get_alert(alert_id)

        if claimed:
            intents = [new_assignment_intent(alert, a.responder_id, d) for a, d in claimed]
            intents.append(status_update_intent(
                alert, alert.user_id, "responders-assigned", assigned_count=len(claimed),
            ))
            self.dispatcher.dispatch(intents)
        return alert
