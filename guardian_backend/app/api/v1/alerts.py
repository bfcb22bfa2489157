"""
FastAPI routes: alert lifecycle.

Provides endpoints to:
    POST   /api/v1/alerts                          — raise an alert and dispatch
    GET    /api/v1/alerts                          — caller's alerts (owner or responder)
    GET    /api/v1/alerts/unassigned               — escalation queue
    GET    /api/v1/alerts/{id}                     — one alert (participants)
    PATCH  /api/v1/alerts/{id}/status              — lifecycle transition
    PATCH  /api/v1/alerts/{id}/assignments/me      — responder progress
    POST   /api/v1/alerts/{id}/messages            — in-alert chat
    DELETE /api/v1/alerts/{id}                     — owner removes an alert
    POST   /api/v1/alerts/{id}/rematch             — claim more responders
    GET    /api/v1/alerts/{id}/tracking            — live tracking view
    GET    /api/v1/alerts/{id}/history             — pings correlated with the alert
    GET    /api/v1/alerts/{id}/nearby-services     — hospitals / police nearby

Handlers are plain ``def``: the core is synchronous and FastAPI runs
them in its threadpool.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from guardian_backend.app.api.deps import get_actor_id, get_services
from guardian_backend.app.api.schemas import (
    AssignmentStatusRequest,
    CreateAlertRequest,
    MessageRequest,
    StatusChangeRequest,
)
from guardian_backend.app.container import Services

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=201,
    summary="Raise an alert",
    description=(
        "Records the alert, claims up to MATCH_MAX_CANDIDATES available "
        "responders nearby and notifies them. Zero assignments is a valid "
        "outcome and triggers an escalation notification."
    ),
)
def create_alert(
    request: CreateAlertRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    alert = services.lifecycle.create_alert(
        actor_id,
        request.location.coordinates,
        accuracy=request.location.accuracy,
        alert_type=request.alert_type,
        extra=request.extra,
    )
    return alert.to_dict()


@router.get("", summary="List the caller's alerts")
def list_alerts(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    as_responder: bool = Query(False, description="Alerts assigned to the caller"),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    if as_responder:
        alerts = services.lifecycle.list_responder_alerts(actor_id, status=status, limit=limit)
    else:
        alerts = services.lifecycle.list_user_alerts(actor_id, status=status, limit=limit)
    return {"count": len(alerts), "alerts": [a.to_dict() for a in alerts]}


@router.get("/unassigned", summary="Active alerts nobody has been assigned to")
def list_unassigned(
    older_than_seconds: float = Query(0.0, ge=0),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    alerts = services.lifecycle.find_unassigned_alerts(older_than_seconds)
    return {"count": len(alerts), "alerts": [a.to_dict() for a in alerts]}


# ---------------------------------------------------------------------------
# Single alert
# ---------------------------------------------------------------------------

@router.get("/{alert_id}", summary="Get an alert")
def get_alert(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.lifecycle.get_alert(alert_id, actor_id).to_dict()


@router.patch(
    "/{alert_id}/status",
    summary="Change alert status",
    description="Transitions follow the lifecycle graph; anything else is a 409.",
)
def change_status(
    alert_id: str,
    request: StatusChangeRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    services.lifecycle.get_alert(alert_id, actor_id)
    alert = services.lifecycle.transition_status(
        alert_id, request.status, acting_responder_id=actor_id,
    )
    return alert.to_dict()


@router.patch("/{alert_id}/assignments/me", summary="Update the caller's assignment")
def update_my_assignment(
    alert_id: str,
    request: AssignmentStatusRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    alert = services.lifecycle.add_assignment_status(alert_id, actor_id, request.status)
    return alert.to_dict()


@router.post("/{alert_id}/messages", status_code=201, summary="Post a message")
def post_message(
    alert_id: str,
    request: MessageRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    alert = services.lifecycle.append_message(
        alert_id, actor_id, request.content, request.message_type,
    )
    return alert.to_dict()


@router.delete("/{alert_id}", status_code=204, summary="Delete an alert (owner only)")
def delete_alert(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Response:
    services.lifecycle.delete_alert(alert_id, actor_id)
    return Response(status_code=204)


@router.post("/{alert_id}/rematch", summary="Claim additional responders")
def rematch(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.lifecycle.rematch_alert(alert_id).to_dict()


# ---------------------------------------------------------------------------
# Tracking views
# ---------------------------------------------------------------------------

@router.get("/{alert_id}/tracking", summary="Live tracking view")
def live_tracking(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.tracker.get_live_tracking(alert_id, actor_id).to_dict()


@router.get("/{alert_id}/history", summary="Location pings for an alert")
def alert_history(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    records = services.tracker.get_alert_history(alert_id, actor_id)
    return {
        "alert_id": alert_id,
        "count": len(records),
        "history": [r.to_dict() for r in records],
    }


@router.get("/{alert_id}/nearby-services", summary="Hospitals and police nearby")
def nearby_services(
    alert_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return services.lifecycle.nearby_services(alert_id, actor_id)
