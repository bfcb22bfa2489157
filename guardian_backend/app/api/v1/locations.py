"""
FastAPI routes: location pings, history, geofence and trusted locations.

Provides endpoints to:
    POST   /api/v1/locations                       — record a ping
    GET    /api/v1/locations/history               — caller's pings, newest first
    GET    /api/v1/locations/distance              — distance travelled in a window
    POST   /api/v1/locations/geofence/check        — is a point inside a trusted location
    GET    /api/v1/locations/trusted               — list trusted locations
    POST   /api/v1/locations/trusted               — add one
    PATCH  /api/v1/locations/trusted/{id}          — update one
    DELETE /api/v1/locations/trusted/{id}          — delete one
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from guardian_backend.app.api.deps import get_actor_id, get_services
from guardian_backend.app.api.schemas import (
    GeofenceCheckRequest,
    LocationUpdateRequest,
    TrustedLocationCreate,
    TrustedLocationUpdate,
)
from guardian_backend.app.container import Services

router = APIRouter(prefix="/api/v1/locations", tags=["locations"])


# ---------------------------------------------------------------------------
# Pings and history
# ---------------------------------------------------------------------------

@router.post("", summary="Record a location ping")
def update_location(
    request: LocationUpdateRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    result = services.tracker.update_location(
        actor_id,
        request.role,
        request.coordinates,
        accuracy=request.accuracy,
        alert_id=request.alert_id,
        battery_level=request.battery_level,
    )
    return result.to_dict()


@router.get("/history", summary="Caller's location history")
def location_history(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    records = services.tracker.get_subject_history(actor_id, start=start, end=end, limit=limit)
    return {
        "subject_id": actor_id,
        "count": len(records),
        "history": [r.to_dict() for r in records],
    }


@router.get("/distance", summary="Distance travelled between two instants")
def distance_traveled(
    start: datetime = Query(...),
    end: datetime = Query(...),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.tracker.distance_traveled(actor_id, start, end)


# ---------------------------------------------------------------------------
# Geofence
# ---------------------------------------------------------------------------

@router.post("/geofence/check", summary="Check a point against trusted locations")
def check_geofence(
    request: GeofenceCheckRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.geofence.evaluate(actor_id, request.coordinates).to_dict()


# ---------------------------------------------------------------------------
# Trusted locations
# ---------------------------------------------------------------------------

@router.get("/trusted", summary="List trusted locations")
def list_trusted(
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    locations = services.trusted_locations.list_trusted_locations(actor_id)
    return {"count": len(locations), "locations": [loc.to_dict() for loc in locations]}


@router.post("/trusted", status_code=201, summary="Add a trusted location")
def add_trusted(
    request: TrustedLocationCreate,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    location = services.trusted_locations.add_trusted_location(
        actor_id,
        request.name,
        request.coordinates,
        radius_m=request.radius_m,
        is_home=request.is_home,
        is_work=request.is_work,
        notes=request.notes,
    )
    return location.to_dict()


@router.patch("/trusted/{location_id}", summary="Update a trusted location")
def update_trusted(
    location_id: str,
    request: TrustedLocationUpdate,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    location = services.trusted_locations.update_trusted_location(
        actor_id, location_id, request.model_dump(exclude_unset=True),
    )
    return location.to_dict()


@router.delete("/trusted/{location_id}", status_code=204, summary="Delete a trusted location")
def delete_trusted(
    location_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Response:
    services.trusted_locations.delete_trusted_location(actor_id, location_id)
    return Response(status_code=204)
