"""
FastAPI routes: responder availability.

Provides endpoints to:
    PUT   /api/v1/responders/me             — register / refresh the caller
    GET   /api/v1/responders/me             — caller's availability
    PATCH /api/v1/responders/me/status      — go available / offline
    POST  /api/v1/responders/me/heartbeat   — keep-alive
    GET   /api/v1/responders/nearby         — available responders around a point
    POST  /api/v1/responders/sweep          — take silent responders offline
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from guardian_backend.app.api.deps import get_actor_id, get_services
from guardian_backend.app.api.schemas import (
    ResponderRegistration,
    ResponderStatusRequest,
    SweepRequest,
)
from guardian_backend.app.container import Services

router = APIRouter(prefix="/api/v1/responders", tags=["responders"])


@router.put("/me", summary="Register or refresh the calling responder")
def register(
    request: ResponderRegistration,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    responder = services.responders.register_responder(
        actor_id,
        vehicle_type=request.vehicle_type,
        coordinates=request.coordinates,
        is_active=request.is_active,
    )
    return responder.to_dict()


@router.get("/me", summary="Calling responder's availability")
def me(
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.responders.get(actor_id).to_dict()


@router.patch("/me/status", summary="Go available or offline")
def set_status(
    request: ResponderStatusRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.responders.set_status(actor_id, request.status).to_dict()


@router.post("/me/heartbeat", summary="Keep-alive")
def heartbeat(
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.responders.heartbeat(actor_id).to_dict()


@router.get("/nearby", summary="Available responders around a point")
def nearby(
    lng: float = Query(..., examples=[-0.1181]),
    lat: float = Query(..., examples=[51.4988]),
    radius_m: float = Query(5000.0, gt=0, le=50000),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    hits = services.responders.list_available_near([lng, lat], radius_m)
    return {
        "count": len(hits),
        "responders": [
            {**hit.item.to_dict(), "distance_m": round(hit.distance_m, 1)} for hit in hits
        ],
    }


@router.post("/sweep", summary="Mark stale responders offline")
def sweep(
    request: SweepRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    swept = services.responders.mark_stale_offline(request.stale_after_seconds)
    return {"count": len(swept), "responder_ids": swept}
