"""
tables.py — SQLAlchemy ORM mappings for the dispatch store.

Tables:
    alerts                  — alert aggregate root (+ tracking snapshot columns)
    alert_assignments       — ordered responder slots, unique per (alert, responder)
    alert_messages          — append-only chat/status log
    responder_availability  — one row per responder
    trusted_locations       — user geofences
    location_history        — append-only ping log
    user_locations          — last-known user position

Every table that answers "points within radius" carries plain
``latitude``/``longitude`` columns with a composite index so the
bounding-box prefilter is an index range scan.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from guardian_backend.app.core.database import Base

UTCDateTime = DateTime(timezone=True)


class AlertRow(Base):
    __tablename__ = "alerts"

    alert_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    formatted_address: Mapped[Optional[str]] = mapped_column(String(512))
    place_id: Mapped[Optional[str]] = mapped_column(String(256))
    static_map_url: Mapped[Optional[str]] = mapped_column(Text)

    # Tracking snapshot
    track_user_lat: Mapped[Optional[float]] = mapped_column(Float)
    track_user_lng: Mapped[Optional[float]] = mapped_column(Float)
    track_responder_lat: Mapped[Optional[float]] = mapped_column(Float)
    track_responder_lng: Mapped[Optional[float]] = mapped_column(Float)
    track_responder_id: Mapped[Optional[str]] = mapped_column(String(64))
    track_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    suppressed_by: Mapped[Optional[str]] = mapped_column(String(100))
    extra: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("ix_alerts_lat_lng", "latitude", "longitude"),
        Index("ix_alerts_user_created", "user_id", "created_at"),
    )


class AssignmentRow(Base):
    __tablename__ = "alert_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        ForeignKey("alerts.alert_id"), nullable=False, index=True,
    )
    responder_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    arrived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_lat: Mapped[Optional[float]] = mapped_column(Float)
    last_lng: Mapped[Optional[float]] = mapped_column(Float)
    proximity_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("alert_id", "responder_id", name="uq_assignment_alert_responder"),
    )


class MessageRow(Base):
    __tablename__ = "alert_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        ForeignKey("alerts.alert_id"), nullable=False, index=True,
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ResponderRow(Base):
    __tablename__ = "responder_availability"

    responder_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    assigned_alert_id: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    last_ping: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(32))

    __table_args__ = (
        Index("ix_responder_status_ping", "status", "last_ping"),
        Index("ix_responder_lat_lng", "latitude", "longitude"),
    )


class TrustedLocationRow(Base):
    __tablename__ = "trusted_locations"

    # Surrogate key keeps creation order for the "first match" policy
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float] = mapped_column(Float, nullable=False)
    is_home: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_work: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    address: Mapped[Optional[str]] = mapped_column(String(512))
    static_map_url: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_trusted_lat_lng", "latitude", "longitude"),
    )


class LocationHistoryRow(Base):
    __tablename__ = "location_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_id: Mapped[Optional[str]] = mapped_column(String(32))
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    battery_level: Mapped[Optional[int]] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_history_subject_ts", "subject_id", "timestamp"),
        Index("ix_history_alert_ts", "alert_id", "timestamp"),
        Index("ix_history_lat_lng", "latitude", "longitude"),
    )


class UserLocationRow(Base):
    __tablename__ = "user_locations"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
