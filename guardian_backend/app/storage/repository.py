"""
repository.py — Logical store operations over the SQLAlchemy tables.

The core only ever talks to ``UnitOfWork`` methods; each method is one
logical operation (point lookup, radius search, conditional update).
A ``UnitOfWork`` wraps exactly one database transaction:

    with store.unit_of_work() as uow:
        uow.insert_alert(alert)
        uow.claim_responder("RSP-1", alert.alert_id, now)   # conditional
        ...
    # committed here, or rolled back if anything above raised

═══════════════════════════════════════════════════════════════════════════
CONDITIONAL UPDATES
═══════════════════════════════════════════════════════════════════════════

Contended rows are never read-modified-written. Each contended change is
a single UPDATE guarded by the expected current value, and success is
judged by ``rowcount == 1``:

    claim_responder           … WHERE status = 'available' AND is_active
    release_responders        … WHERE assigned_alert_id = :alert AND status = 'busy'
    compare_and_set_status    … WHERE alert_id = :id AND status = :expected

Store reads never open a second transaction inside a unit of work.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.orm import Session

from guardian_backend.app.alerts.models import (
    Alert,
    AlertLocation,
    AlertMessage,
    AlertStatus,
    AlertType,
    Assignment,
    AssignmentStatus,
    LocationHistoryRecord,
    MessageType,
    ResponderAvailability,
    ResponderStatus,
    SubjectRole,
    TrackingSnapshot,
    TrustedLocation,
    UserLocation,
)
from guardian_backend.app.core.database import Database
from guardian_backend.app.spatial.geo_index import GeoHit, points_within
from guardian_backend.app.spatial.radius_utils import Coordinate, bounding_box
from guardian_backend.app.storage.tables import (
    AlertRow,
    AssignmentRow,
    LocationHistoryRow,
    MessageRow,
    ResponderRow,
    TrustedLocationRow,
    UserLocationRow,
)

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}
_FRESH = {"populate_existing": True}


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ model conversion
# ═══════════════════════════════════════════════════════════════════════════

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coord(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinate]:
    if lat is None or lng is None:
        return None
    return Coordinate(latitude=lat, longitude=lng)


def _assignment(row: AssignmentRow) -> Assignment:
    return Assignment(
        responder_id=row.responder_id,
        assigned_at=_as_utc(row.assigned_at),
        status=AssignmentStatus(row.status),
        arrived_at=_as_utc(row.arrived_at),
        last_location=_coord(row.last_lat, row.last_lng),
        proximity_notified=bool(row.proximity_notified),
    )


def _message(row: MessageRow) -> AlertMessage:
    return AlertMessage(
        sender_id=row.sender_id,
        content=row.content,
        message_type=MessageType(row.message_type),
        timestamp=_as_utc(row.timestamp),
    )


def _alert(
    row: AlertRow,
    assignments: Sequence[AssignmentRow],
    messages: Sequence[MessageRow],
) -> Alert:
    tracking = None
    if row.track_updated_at is not None:
        tracking = TrackingSnapshot(
            last_user_location=_coord(row.track_user_lat, row.track_user_lng),
            last_responder_location=_coord(row.track_responder_lat, row.track_responder_lng),
            last_responder_id=row.track_responder_id,
            last_updated=_as_utc(row.track_updated_at),
        )
    return Alert(
        alert_id=row.alert_id,
        user_id=row.user_id,
        alert_type=AlertType(row.alert_type),
        status=AlertStatus(row.status),
        location=AlertLocation(
            coordinate=Coordinate(latitude=row.latitude, longitude=row.longitude),
            accuracy_m=row.accuracy_m,
            formatted_address=row.formatted_address,
            place_id=row.place_id,
            static_map_url=row.static_map_url,
        ),
        assigned_responders=[_assignment(a) for a in assignments],
        tracking=tracking,
        messages=[_message(m) for m in messages],
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        resolved_at=_as_utc(row.resolved_at),
        extra=dict(row.extra or {}),
        suppressed_by=row.suppressed_by,
    )


def _responder(row: ResponderRow) -> ResponderAvailability:
    return ResponderAvailability(
        responder_id=row.responder_id,
        status=ResponderStatus(row.status),
        is_active=bool(row.is_active),
        current_location=_coord(row.latitude, row.longitude),
        location_updated_at=_as_utc(row.location_updated_at),
        assigned_alert_id=row.assigned_alert_id,
        last_ping=_as_utc(row.last_ping),
        vehicle_type=row.vehicle_type,
    )


def _trusted(row: TrustedLocationRow) -> TrustedLocation:
    return TrustedLocation(
        location_id=row.location_id,
        user_id=row.user_id,
        name=row.name,
        coordinate=Coordinate(latitude=row.latitude, longitude=row.longitude),
        radius_m=row.radius_m,
        is_home=bool(row.is_home),
        is_work=bool(row.is_work),
        notes=row.notes,
        address=row.address,
        static_map_url=row.static_map_url,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _history(row: LocationHistoryRow) -> LocationHistoryRecord:
    return LocationHistoryRecord(
        record_id=row.id,
        subject_id=row.subject_id,
        role=SubjectRole(row.role),
        coordinate=Coordinate(latitude=row.latitude, longitude=row.longitude),
        accuracy_m=row.accuracy_m,
        alert_id=row.alert_id,
        battery_level=row.battery_level,
        timestamp=_as_utc(row.timestamp),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Unit of Work
# ═══════════════════════════════════════════════════════════════════════════

class UnitOfWork:
    """All store operations, bound to one open transaction."""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Nested transaction; a failure inside rolls back only this block."""
        with self.session.begin_nested():
            yield

    # ── Alerts ──────────────────────────────────────────────────────────

    def insert_alert(self, alert: Alert) -> None:
        tracking = alert.tracking or TrackingSnapshot()
        user_loc = tracking.last_user_location
        resp_loc = tracking.last_responder_location
        self.session.add(AlertRow(
            alert_id=alert.alert_id,
            user_id=alert.user_id,
            alert_type=alert.alert_type.value,
            status=alert.status.value,
            latitude=alert.location.coordinate.latitude,
            longitude=alert.location.coordinate.longitude,
            accuracy_m=alert.location.accuracy_m,
            formatted_address=alert.location.formatted_address,
            place_id=alert.location.place_id,
            static_map_url=alert.location.static_map_url,
            track_user_lat=user_loc.latitude if user_loc else None,
            track_user_lng=user_loc.longitude if user_loc else None,
            track_responder_lat=resp_loc.latitude if resp_loc else None,
            track_responder_lng=resp_loc.longitude if resp_loc else None,
            track_responder_id=tracking.last_responder_id,
            track_updated_at=tracking.last_updated,
            suppressed_by=alert.suppressed_by,
            extra=alert.extra,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
            resolved_at=alert.resolved_at,
        ))
        self.session.flush()

    def get_alert(self, alert_id: str, *, for_update: bool = False) -> Optional[Alert]:
        stmt = select(AlertRow).where(AlertRow.alert_id == alert_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.session.scalars(stmt.execution_options(**_FRESH)).first()
        if row is None:
            return None
        return self._hydrate([row])[0]

    def _hydrate(self, rows: Sequence[AlertRow]) -> List[Alert]:
        if not rows:
            return []
        ids = [r.alert_id for r in rows]
        assignments = self.session.scalars(
            select(AssignmentRow)
            .where(AssignmentRow.alert_id.in_(ids))
            .order_by(AssignmentRow.alert_id, AssignmentRow.position)
            .execution_options(**_FRESH)
        ).all()
        messages = self.session.scalars(
            select(MessageRow)
            .where(MessageRow.alert_id.in_(ids))
            .order_by(MessageRow.alert_id, MessageRow.id)
            .execution_options(**_FRESH)
        ).all()
        by_alert_a = {i: [] for i in ids}
        by_alert_m = {i: [] for i in ids}
        for a in assignments:
            by_alert_a[a.alert_id].append(a)
        for m in messages:
            by_alert_m[m.alert_id].append(m)
        return [_alert(r, by_alert_a[r.alert_id], by_alert_m[r.alert_id]) for r in rows]

    def compare_and_set_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new: AlertStatus,
        now: datetime,
    ) -> bool:
        values = {"status": new.value, "updated_at": now}
        if new == AlertStatus.RESOLVED:
            values["resolved_at"] = now
        result = self.session.execute(
            update(AlertRow)
            .where(AlertRow.alert_id == alert_id, AlertRow.status == expected.value)
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def add_assignments(self, alert_id: str, assignments: Iterable[Assignment]) -> None:
        start = self.session.scalar(
            select(func.count()).select_from(AssignmentRow)
            .where(AssignmentRow.alert_id == alert_id)
        ) or 0
        for offset, a in enumerate(assignments):
            self.session.add(AssignmentRow(
                alert_id=alert_id,
                responder_id=a.responder_id,
                position=start + offset,
                status=a.status.value,
                assigned_at=a.assigned_at,
                arrived_at=a.arrived_at,
                last_lat=a.last_location.latitude if a.last_location else None,
                last_lng=a.last_location.longitude if a.last_location else None,
                proximity_notified=a.proximity_notified,
            ))
        self.session.flush()

    def set_assignment_status(
        self,
        alert_id: str,
        responder_id: str,
        status: AssignmentStatus,
        *,
        arrived_at: Optional[datetime] = None,
    ) -> bool:
        values = {"status": status.value}
        if arrived_at is not None:
            values["arrived_at"] = arrived_at
        result = self.session.execute(
            update(AssignmentRow)
            .where(
                AssignmentRow.alert_id == alert_id,
                AssignmentRow.responder_id == responder_id,
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def update_assignment_tracking(
        self, alert_id: str, assignment: Assignment,
    ) -> None:
        """Persist one responder's last position and approach flag."""
        loc = assignment.last_location
        self.session.execute(
            update(AssignmentRow)
            .where(
                AssignmentRow.alert_id == alert_id,
                AssignmentRow.responder_id == assignment.responder_id,
            )
            .values(
                last_lat=loc.latitude if loc else None,
                last_lng=loc.longitude if loc else None,
                proximity_notified=assignment.proximity_notified,
            )
            .execution_options(**_NO_SYNC)
        )

    def touch_alert(self, alert_id: str, now: datetime) -> None:
        self.session.execute(
            update(AlertRow)
            .where(AlertRow.alert_id == alert_id)
            .values(updated_at=now)
            .execution_options(**_NO_SYNC)
        )

    def update_tracking(self, alert_id: str, tracking: TrackingSnapshot) -> None:
        user_loc = tracking.last_user_location
        resp_loc = tracking.last_responder_location
        self.session.execute(
            update(AlertRow)
            .where(AlertRow.alert_id == alert_id)
            .values(
                track_user_lat=user_loc.latitude if user_loc else None,
                track_user_lng=user_loc.longitude if user_loc else None,
                track_responder_lat=resp_loc.latitude if resp_loc else None,
                track_responder_lng=resp_loc.longitude if resp_loc else None,
                track_responder_id=tracking.last_responder_id,
                track_updated_at=tracking.last_updated,
                updated_at=tracking.last_updated,
            )
            .execution_options(**_NO_SYNC)
        )

    def update_enrichment(
        self,
        alert_id: str,
        *,
        formatted_address: Optional[str],
        place_id: Optional[str],
        static_map_url: Optional[str],
    ) -> bool:
        result = self.session.execute(
            update(AlertRow)
            .where(AlertRow.alert_id == alert_id)
            .values(
                formatted_address=formatted_address,
                place_id=place_id,
                static_map_url=static_map_url,
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def append_message(self, alert_id: str, message: AlertMessage) -> None:
        self.session.add(MessageRow(
            alert_id=alert_id,
            sender_id=message.sender_id,
            content=message.content,
            message_type=message.message_type.value,
            timestamp=message.timestamp,
        ))
        self.session.flush()

    def delete_alert(self, alert_id: str) -> bool:
        self.session.execute(
            delete(MessageRow).where(MessageRow.alert_id == alert_id)
            .execution_options(**_NO_SYNC)
        )
        self.session.execute(
            delete(AssignmentRow).where(AssignmentRow.alert_id == alert_id)
            .execution_options(**_NO_SYNC)
        )
        result = self.session.execute(
            delete(AlertRow).where(AlertRow.alert_id == alert_id)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def list_alerts_for_user(
        self,
        user_id: str,
        *,
        status: Optional[AlertStatus] = None,
        limit: int = 50,
    ) -> List[Alert]:
        stmt = select(AlertRow).where(AlertRow.user_id == user_id)
        if status is not None:
            stmt = stmt.where(AlertRow.status == status.value)
        stmt = stmt.order_by(AlertRow.created_at.desc()).limit(limit)
        return self._hydrate(self.session.scalars(stmt.execution_options(**_FRESH)).all())

    def list_alerts_for_responder(
        self,
        responder_id: str,
        *,
        status: Optional[AlertStatus] = None,
        limit: int = 50,
    ) -> List[Alert]:
        stmt = (
            select(AlertRow)
            .join(AssignmentRow, AssignmentRow.alert_id == AlertRow.alert_id)
            .where(AssignmentRow.responder_id == responder_id)
        )
        if status is not None:
            stmt = stmt.where(AlertRow.status == status.value)
        stmt = stmt.order_by(AlertRow.created_at.desc()).limit(limit)
        return self._hydrate(self.session.scalars(stmt.execution_options(**_FRESH)).all())

    def unassigned_active_alerts(self, created_before: datetime) -> List[Alert]:
        has_assignment = exists().where(AssignmentRow.alert_id == AlertRow.alert_id)
        stmt = (
            select(AlertRow)
            .where(
                AlertRow.status == AlertStatus.ACTIVE.value,
                AlertRow.suppressed_by.is_(None),
                AlertRow.created_at < created_before,
                ~has_assignment,
            )
            .order_by(AlertRow.created_at)
        )
        return self._hydrate(self.session.scalars(stmt.execution_options(**_FRESH)).all())

    # ── Responders ──────────────────────────────────────────────────────

    def get_responder(self, responder_id: str) -> Optional[ResponderAvailability]:
        row = self.session.scalars(
            select(ResponderRow)
            .where(ResponderRow.responder_id == responder_id)
            .execution_options(**_FRESH)
        ).first()
        return _responder(row) if row else None

    def upsert_responder(self, responder: ResponderAvailability) -> None:
        row = self.session.get(ResponderRow, responder.responder_id)
        if row is None:
            row = ResponderRow(responder_id=responder.responder_id)
            self.session.add(row)
        loc = responder.current_location
        row.status = responder.status.value
        row.is_active = responder.is_active
        row.latitude = loc.latitude if loc else None
        row.longitude = loc.longitude if loc else None
        row.location_updated_at = responder.location_updated_at
        row.assigned_alert_id = responder.assigned_alert_id
        row.last_ping = responder.last_ping
        row.vehicle_type = responder.vehicle_type
        self.session.flush()

    def find_available_responders_near(
        self,
        center: Coordinate,
        radius_m: float,
        *,
        exclude: Iterable[str] = (),
    ) -> List[GeoHit[ResponderAvailability]]:
        """Available, active, located responders within ``radius_m`` (nearest first)."""
        min_lat, max_lat, min_lon, max_lon = bounding_box(center, radius_m / 1000.0)
        stmt = select(ResponderRow).where(
            ResponderRow.status == ResponderStatus.AVAILABLE.value,
            ResponderRow.is_active.is_(True),
            ResponderRow.latitude.is_not(None),
            ResponderRow.longitude.is_not(None),
            ResponderRow.latitude.between(min_lat, max_lat),
            ResponderRow.longitude.between(min_lon, max_lon),
        )
        excluded = set(exclude)
        if excluded:
            stmt = stmt.where(ResponderRow.responder_id.not_in(excluded))
        rows = self.session.scalars(stmt.execution_options(**_FRESH)).all()
        return points_within(
            center, radius_m, [_responder(r) for r in rows],
            lambda r: r.current_location,
        )

    def claim_responder(self, responder_id: str, alert_id: str) -> bool:
        """available → busy, only if still available and active."""
        result = self.session.execute(
            update(ResponderRow)
            .where(
                ResponderRow.responder_id == responder_id,
                ResponderRow.status == ResponderStatus.AVAILABLE.value,
                ResponderRow.is_active.is_(True),
            )
            .values(status=ResponderStatus.BUSY.value, assigned_alert_id=alert_id)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def release_responders(self, alert_id: str) -> List[str]:
        """busy → available for every responder held by ``alert_id``."""
        held = and_(
            ResponderRow.assigned_alert_id == alert_id,
            ResponderRow.status == ResponderStatus.BUSY.value,
        )
        ids = list(self.session.scalars(select(ResponderRow.responder_id).where(held)).all())
        if ids:
            self.session.execute(
                update(ResponderRow)
                .where(held)
                .values(status=ResponderStatus.AVAILABLE.value, assigned_alert_id=None)
                .execution_options(**_NO_SYNC)
            )
        return ids

    def set_responder_status(
        self,
        responder_id: str,
        new_status: ResponderStatus,
        *,
        expected: Iterable[ResponderStatus],
        now: datetime,
    ) -> bool:
        result = self.session.execute(
            update(ResponderRow)
            .where(
                ResponderRow.responder_id == responder_id,
                ResponderRow.status.in_([s.value for s in expected]),
            )
            .values(status=new_status.value, last_ping=now)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def touch_responder_location(
        self, responder_id: str, coordinate: Coordinate, now: datetime,
    ) -> bool:
        result = self.session.execute(
            update(ResponderRow)
            .where(ResponderRow.responder_id == responder_id)
            .values(
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
                location_updated_at=now,
                last_ping=now,
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def heartbeat(self, responder_id: str, now: datetime) -> bool:
        result = self.session.execute(
            update(ResponderRow)
            .where(ResponderRow.responder_id == responder_id)
            .values(last_ping=now)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def mark_stale_offline(self, cutoff: datetime) -> List[str]:
        """available → offline for responders silent since before ``cutoff``."""
        stale = and_(
            ResponderRow.status == ResponderStatus.AVAILABLE.value,
            ResponderRow.last_ping < cutoff,
        )
        ids = list(self.session.scalars(select(ResponderRow.responder_id).where(stale)).all())
        if ids:
            self.session.execute(
                update(ResponderRow)
                .where(stale, ResponderRow.responder_id.in_(ids))
                .values(status=ResponderStatus.OFFLINE.value)
                .execution_options(**_NO_SYNC)
            )
        return ids

    # ── Users ───────────────────────────────────────────────────────────

    def upsert_user_location(self, location: UserLocation) -> None:
        row = self.session.get(UserLocationRow, location.user_id)
        if row is None:
            row = UserLocationRow(user_id=location.user_id)
            self.session.add(row)
        row.latitude = location.coordinate.latitude
        row.longitude = location.coordinate.longitude
        row.accuracy_m = location.accuracy_m
        row.updated_at = location.updated_at
        self.session.flush()

    def get_user_location(self, user_id: str) -> Optional[UserLocation]:
        row = self.session.scalars(
            select(UserLocationRow)
            .where(UserLocationRow.user_id == user_id)
            .execution_options(**_FRESH)
        ).first()
        if row is None:
            return None
        return UserLocation(
            user_id=row.user_id,
            coordinate=Coordinate(latitude=row.latitude, longitude=row.longitude),
            accuracy_m=row.accuracy_m,
            updated_at=_as_utc(row.updated_at),
        )

    # ── Trusted locations ───────────────────────────────────────────────

    def add_trusted_location(self, location: TrustedLocation) -> None:
        self.session.add(TrustedLocationRow(
            location_id=location.location_id,
            user_id=location.user_id,
            name=location.name,
            latitude=location.coordinate.latitude,
            longitude=location.coordinate.longitude,
            radius_m=location.radius_m,
            is_home=location.is_home,
            is_work=location.is_work,
            notes=location.notes,
            address=location.address,
            static_map_url=location.static_map_url,
            created_at=location.created_at,
            updated_at=location.updated_at,
        ))
        self.session.flush()

    def get_trusted_location(self, location_id: str) -> Optional[TrustedLocation]:
        row = self.session.scalars(
            select(TrustedLocationRow)
            .where(TrustedLocationRow.location_id == location_id)
            .execution_options(**_FRESH)
        ).first()
        return _trusted(row) if row else None

    def list_trusted_locations(self, user_id: str) -> List[TrustedLocation]:
        """A user's trusted locations in creation order."""
        rows = self.session.scalars(
            select(TrustedLocationRow)
            .where(TrustedLocationRow.user_id == user_id)
            .order_by(TrustedLocationRow.id)
            .execution_options(**_FRESH)
        ).all()
        return [_trusted(r) for r in rows]

    def save_trusted_location(self, location: TrustedLocation) -> bool:
        result = self.session.execute(
            update(TrustedLocationRow)
            .where(TrustedLocationRow.location_id == location.location_id)
            .values(
                name=location.name,
                latitude=location.coordinate.latitude,
                longitude=location.coordinate.longitude,
                radius_m=location.radius_m,
                is_home=location.is_home,
                is_work=location.is_work,
                notes=location.notes,
                address=location.address,
                static_map_url=location.static_map_url,
                updated_at=location.updated_at,
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    def delete_trusted_location(self, location_id: str) -> bool:
        result = self.session.execute(
            delete(TrustedLocationRow)
            .where(TrustedLocationRow.location_id == location_id)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    # ── Location history ────────────────────────────────────────────────

    def append_history(self, record: LocationHistoryRecord) -> None:
        self.session.add(LocationHistoryRow(
            subject_id=record.subject_id,
            role=record.role.value,
            alert_id=record.alert_id,
            latitude=record.coordinate.latitude,
            longitude=record.coordinate.longitude,
            accuracy_m=record.accuracy_m,
            battery_level=record.battery_level,
            timestamp=record.timestamp,
        ))
        self.session.flush()

    def history_for_subject(
        self,
        subject_id: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 100,
        newest_first: bool = True,
    ) -> List[LocationHistoryRecord]:
        stmt = select(LocationHistoryRow).where(LocationHistoryRow.subject_id == subject_id)
        if start is not None:
            stmt = stmt.where(LocationHistoryRow.timestamp >= _as_utc(start))
        if end is not None:
            stmt = stmt.where(LocationHistoryRow.timestamp <= _as_utc(end))
        if newest_first:
            stmt = stmt.order_by(LocationHistoryRow.timestamp.desc(), LocationHistoryRow.id.desc())
        else:
            stmt = stmt.order_by(LocationHistoryRow.timestamp, LocationHistoryRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_history(r) for r in self.session.scalars(stmt).all()]

    def history_for_alert(self, alert_id: str) -> List[LocationHistoryRecord]:
        rows = self.session.scalars(
            select(LocationHistoryRow)
            .where(LocationHistoryRow.alert_id == alert_id)
            .order_by(LocationHistoryRow.timestamp, LocationHistoryRow.id)
        ).all()
        return [_history(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class DispatchStore:
    """Entry point: hands out units of work over one ``Database``."""

    def __init__(self, database: Database):
        self.database = database

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        with self.database.session_scope() as session:
            yield UnitOfWork(session)

    # Read-only shortcuts, each in its own short transaction

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self.unit_of_work() as uow:
            return uow.get_alert(alert_id)

    def get_responder(self, responder_id: str) -> Optional[ResponderAvailability]:
        with self.unit_of_work() as uow:
            return uow.get_responder(responder_id)

    def list_trusted_locations(self, user_id: str) -> List[TrustedLocation]:
        with self.unit_of_work() as uow:
            return uow.list_trusted_locations(user_id)
