"""
Pydantic request schemas for the dispatch API.

Only shapes are checked here; coordinate ranges, radius bounds and enum
values are validated by the services so that HTTP and programmatic
callers get the same errors.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class PointInput(BaseModel):
    """A GPS fix, longitude first."""
    coordinates: List[float] = Field(
        ..., description="[longitude, latitude]", examples=[[-0.1181, 51.4988]],
    )
    accuracy: float = Field(0.0, description="Accuracy radius in metres", examples=[12.0])


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class CreateAlertRequest(BaseModel):
    """Request body for POST /api/v1/alerts."""
    location: PointInput
    alert_type: str = Field(
        "panic", examples=["panic"],
        description="panic / fall-detection / timer-expired",
    )
    extra: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form client metadata (device info, app version)",
    )


class StatusChangeRequest(BaseModel):
    status: str = Field(..., examples=["acknowledged"])


class AssignmentStatusRequest(BaseModel):
    status: str = Field(..., examples=["enroute"], description="assigned / enroute / on-scene")


class MessageRequest(BaseModel):
    content: str = Field(..., examples=["On my way, 5 minutes out"])
    message_type: str = Field("text", examples=["text"])


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class LocationUpdateRequest(BaseModel):
    """Request body for POST /api/v1/locations."""
    role: str = Field("user", examples=["responder"], description="user / responder")
    coordinates: List[float] = Field(..., examples=[[-0.0877, 51.5079]])
    accuracy: float = Field(0.0, examples=[8.0])
    alert_id: Optional[str] = Field(None, description="Alert this ping belongs to")
    battery_level: Optional[int] = Field(None, examples=[64])


class GeofenceCheckRequest(BaseModel):
    coordinates: List[float] = Field(..., examples=[[-0.1181, 51.4988]])


class TrustedLocationCreate(BaseModel):
    name: str = Field(..., examples=["Home"])
    coordinates: List[float] = Field(..., examples=[[-0.1181, 51.4988]])
    radius_m: Optional[float] = Field(None, examples=[150.0], description="10–1000 m, default 100")
    is_home: bool = False
    is_work: bool = False
    notes: Optional[str] = None


class TrustedLocationUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""
    name: Optional[str] = None
    coordinates: Optional[List[float]] = None
    radius_m: Optional[float] = None
    is_home: Optional[bool] = None
    is_work: Optional[bool] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Responders
# ---------------------------------------------------------------------------

class ResponderRegistration(BaseModel):
    vehicle_type: Optional[str] = Field(
        None, examples=["car"],
        description="car / motorcycle / bicycle / foot / ambulance",
    )
    coordinates: Optional[List[float]] = Field(None, examples=[[-0.1240, 51.5010]])
    is_active: bool = True


class ResponderStatusRequest(BaseModel):
    status: str = Field(..., examples=["available"], description="available / offline")


class SweepRequest(BaseModel):
    stale_after_seconds: Optional[float] = Field(
        None, ge=0, description="Defaults to RESPONDER_STALE_AFTER_SECONDS",
    )
