"""
models.py — Shared data structures for the dispatch engine.

Defines:
    • AlertStatus / AlertType        — alert lifecycle + trigger kind
    • AssignmentStatus               — per-responder progress on an alert
    • ResponderStatus / SubjectRole  — availability and location roles
    • NotificationKind               — intents handed to the notifier
    • Alert, Assignment, TrackingSnapshot, AlertMessage
    • ResponderAvailability, TrustedLocation, LocationHistoryRecord
    • NotificationIntent

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    ┌────────┐ acknowledge ┌──────────────┐
    │ active │ ──────────▶ │ acknowledged │
    └───┬────┘             └──────┬───────┘
        │ resolve / cancel        │ resolve / cancel
        ▼                         ▼
    ┌──────────────────────────────────┐
    │   resolved   |   cancelled       │   (terminal, no way out)
    └──────────────────────────────────┘

Entering a terminal state frees every responder the alert holds.

═══════════════════════════════════════════════════════════════════════════
RESPONDER AVAILABILITY
═══════════════════════════════════════════════════════════════════════════

    available ──claim (matcher)──▶ busy ──terminal alert──▶ available
    available ◀──────── set_status / heartbeat sweep ───────▶ offline

``busy`` is only ever entered through a conditional claim, and
``assigned_alert_id`` is non-null exactly while a responder is busy.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Type, TypeVar

from guardian_backend.app.core.errors import ValidationError
from guardian_backend.app.spatial.radius_utils import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertStatus(str, Enum):
    ACTIVE       = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED     = "resolved"
    CANCELLED    = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class AlertType(str, Enum):
    """What triggered the alert (informational only)."""
    PANIC          = "panic"
    FALL_DETECTION = "fall-detection"
    TIMER_EXPIRED  = "timer-expired"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ENROUTE  = "enroute"
    ON_SCENE = "on-scene"


class ResponderStatus(str, Enum):
    AVAILABLE = "available"
    BUSY      = "busy"
    OFFLINE   = "offline"


class SubjectRole(str, Enum):
    USER      = "user"
    RESPONDER = "responder"


class NotificationKind(str, Enum):
    NEW_ASSIGNMENT = "new-assignment"
    STATUS_UPDATE  = "status-update"
    PROXIMITY      = "proximity"
    NO_RESPONDERS  = "no-responders"


class MessageType(str, Enum):
    TEXT     = "text"
    LOCATION = "location"
    STATUS   = "status"


# ═══════════════════════════════════════════════════════════════════════════
# Transition Graph
# ═══════════════════════════════════════════════════════════════════════════

TERMINAL_STATUSES: FrozenSet[AlertStatus] = frozenset(
    {AlertStatus.RESOLVED, AlertStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset(
        {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.CANCELLED}
    ),
    AlertStatus.ACKNOWLEDGED: frozenset(
        {AlertStatus.RESOLVED, AlertStatus.CANCELLED}
    ),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.CANCELLED: frozenset(),
}


def can_transition(current: AlertStatus, requested: AlertStatus) -> bool:
    """True when ``requested`` is reachable in one step from ``current``."""
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: Any, *, field: str) -> E:
    """Coerce a raw string into ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} '{value}' (allowed: {allowed})", field=field,
        ) from None


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id(prefix: str = "ALR") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _point(coord: Optional[Coordinate]) -> Optional[Dict[str, Any]]:
    if coord is None:
        return None
    return {"type": "Point", "coordinates": coord.to_lnglat()}


@dataclass
class AlertLocation:
    """Where the alert was raised, plus best-effort enrichment."""
    coordinate: Coordinate
    accuracy_m: float = 0.0
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None
    static_map_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **_point(self.coordinate),
            "accuracy": self.accuracy_m,
            "address": self.formatted_address,
            "place_id": self.place_id,
            "static_map_url": self.static_map_url,
        }


@dataclass
class Assignment:
    """
    One responder's slot on an alert.

    ``last_location`` and ``proximity_notified`` track this responder only.
    """
    responder_id: str
    assigned_at: datetime = field(default_factory=_now)
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    arrived_at: Optional[datetime] = None
    last_location: Optional[Coordinate] = None
    proximity_notified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "responder_id": self.responder_id,
            "assigned_at": _iso(self.assigned_at),
            "status": self.status.value,
            "arrived_at": _iso(self.arrived_at),
            "last_location": _point(self.last_location),
            "proximity_notified": self.proximity_notified,
        }


@dataclass
class TrackingSnapshot:
    """Latest user position and the most recently reporting responder."""
    last_user_location: Optional[Coordinate] = None
    last_responder_location: Optional[Coordinate] = None
    last_responder_id: Optional[str] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_user_location": _point(self.last_user_location),
            "last_responder_location": _point(self.last_responder_location),
            "last_responder_id": self.last_responder_id,
            "last_updated": _iso(self.last_updated),
        }


@dataclass
class AlertMessage:
    sender_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender_id": self.sender_id,
            "content": self.content,
            "message_type": self.message_type.value,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class Alert:
    """
    The alert aggregate.

    Attributes
    ----------
    alert_id : str
        Opaque identifier (``ALR-XXXXXXXXXXXX``).
    user_id : str
        Owner; never changes after creation.
    assigned_responders : list[Assignment]
        Ordered by claim order; each responder appears at most once.
    suppressed_by : str | None
        Trusted-location name that suppressed dispatch, if any.
    """
    alert_id: str
    user_id: str
    location: AlertLocation
    alert_type: AlertType = AlertType.PANIC
    status: AlertStatus = AlertStatus.ACTIVE
    assigned_responders: List[Assignment] = field(default_factory=list)
    tracking: Optional[TrackingSnapshot] = None
    messages: List[AlertMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    resolved_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    suppressed_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def responder_ids(self) -> List[str]:
        return [a.responder_id for a in self.assigned_responders]

    def assignment_for(self, responder_id: str) -> Optional[Assignment]:
        for a in self.assigned_responders:
            if a.responder_id == responder_id:
                return a
        return None

    def is_participant(self, subject_id: str) -> bool:
        """Owner or currently assigned responder."""
        return subject_id == self.user_id or self.assignment_for(subject_id) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "alert_type": self.alert_type.value,
            "status": self.status.value,
            "location": self.location.to_dict(),
            "assigned_responders": [a.to_dict() for a in self.assigned_responders],
            "tracking": self.tracking.to_dict() if self.tracking else None,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "resolved_at": _iso(self.resolved_at),
            "extra": self.extra,
            "suppressed_by": self.suppressed_by,
        }


@dataclass
class ResponderAvailability:
    responder_id: str
    status: ResponderStatus = ResponderStatus.OFFLINE
    is_active: bool = True
    current_location: Optional[Coordinate] = None
    location_updated_at: Optional[datetime] = None
    assigned_alert_id: Optional[str] = None
    last_ping: datetime = field(default_factory=_now)
    vehicle_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "responder_id": self.responder_id,
            "status": self.status.value,
            "is_active": self.is_active,
            "current_location": _point(self.current_location),
            "location_updated_at": _iso(self.location_updated_at),
            "assigned_alert_id": self.assigned_alert_id,
            "last_ping": _iso(self.last_ping),
            "vehicle_type": self.vehicle_type,
        }


@dataclass
class TrustedLocation:
    """A user-defined circle where alerts are considered safe."""
    location_id: str
    user_id: str
    name: str
    coordinate: Coordinate
    radius_m: float = 100.0
    is_home: bool = False
    is_work: bool = False
    notes: Optional[str] = None
    address: Optional[str] = None
    static_map_url: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "user_id": self.user_id,
            "name": self.name,
            "location": _point(self.coordinate),
            "radius_m": self.radius_m,
            "is_home": self.is_home,
            "is_work": self.is_work,
            "notes": self.notes,
            "address": self.address,
            "static_map_url": self.static_map_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class LocationHistoryRecord:
    subject_id: str
    role: SubjectRole
    coordinate: Coordinate
    accuracy_m: float = 0.0
    alert_id: Optional[str] = None
    battery_level: Optional[int] = None
    timestamp: datetime = field(default_factory=_now)
    record_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "role": self.role.value,
            "location": _point(self.coordinate),
            "accuracy": self.accuracy_m,
            "alert_id": self.alert_id,
            "battery_level": self.battery_level,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class UserLocation:
    """A user's last-known position."""
    user_id: str
    coordinate: Coordinate
    accuracy_m: float = 0.0
    updated_at: datetime = field(default_factory=_now)


@dataclass
class NotificationIntent:
    """Who should be told what. Delivery is the notifier's business."""
    target_id: str
    kind: NotificationKind
    payload: Dict[str, Any] = field(default_factory=dict)
    alert_id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "kind": self.kind.value,
            "payload": self.payload,
            "alert_id": self.alert_id,
            "created_at": _iso(self.created_at),
        }
