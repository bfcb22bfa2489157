"""
test_api.py — HTTP surface: routing, caller identity, error envelope.

The app is built around pre-wired in-memory services, so no lifespan
startup is needed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from guardian_backend.app.main import create_app

from conftest import LONDON_BRIDGE, TOWER_BRIDGE, WESTMINSTER, add_responder, offset


@pytest.fixture
def client(settings, services):
    return TestClient(create_app(settings, services))


def _as(actor: str):
    return {"X-Actor-Id": actor}


def _raise_alert(client, actor="U1", coordinates=WESTMINSTER, **extra):
    body = {"location": {"coordinates": coordinates, "accuracy": 15}, **extra}
    resp = client.post("/api/v1/alerts", json=body, headers=_as(actor))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════
# Identity and error envelope
# ═══════════════════════════════════════════════════════════════════════════

class TestEnvelope:

    @pytest.mark.parametrize("headers", [{}, {"X-Actor-Id": "   "}])
    def test_missing_actor_is_forbidden(self, client, headers):
        resp = client.get("/api/v1/alerts", headers=headers)
        assert resp.status_code == 403
        assert resp.json() == {
            "error": {"code": "FORBIDDEN", "message": "not authorized", "status": 403},
        }

    def test_domain_validation(self, client):
        resp = client.post(
            "/api/v1/alerts",
            json={"location": {"coordinates": [0.0, 95.0]}},
            headers=_as("U1"),
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "location.coordinates"

    def test_request_shape_validation(self, client):
        resp = client.post("/api/v1/alerts", json={"alert_type": "panic"}, headers=_as("U1"))
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any("location" in e["field"] for e in error["details"]["errors"])

    def test_not_found(self, client):
        resp = client.get("/api/v1/alerts/ALR-MISSING", headers=_as("U1"))
        assert resp.status_code == 404
        assert resp.json()["error"]["details"] == {
            "resource": "Alert", "alert_id": "ALR-MISSING",
        }


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertRoutes:

    def test_create_and_fetch(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        body = _raise_alert(client, alert_type="fall-detection", extra={"device": "watch"})

        assert body["user_id"] == "U1"
        assert body["status"] == "active"
        assert body["alert_type"] == "fall-detection"
        assert body["location"]["coordinates"] == WESTMINSTER
        assert body["location"]["address"].endswith("London")
        assert [a["responder_id"] for a in body["assigned_responders"]] == ["R1"]

        for actor in ("U1", "R1"):
            resp = client.get(f"/api/v1/alerts/{body['alert_id']}", headers=_as(actor))
            assert resp.status_code == 200
            assert resp.json()["extra"] == {"device": "watch"}
        assert client.get(
            f"/api/v1/alerts/{body['alert_id']}", headers=_as("U2"),
        ).status_code == 403

    def test_list_as_owner_and_responder(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        alert = _raise_alert(client)

        mine = client.get("/api/v1/alerts", headers=_as("U1")).json()
        assert mine["count"] == 1
        assigned = client.get(
            "/api/v1/alerts", params={"as_responder": True}, headers=_as("R1"),
        ).json()
        assert [a["alert_id"] for a in assigned["alerts"]] == [alert["alert_id"]]
        filtered = client.get(
            "/api/v1/alerts", params={"status": "resolved"}, headers=_as("U1"),
        ).json()
        assert filtered["count"] == 0

    def test_status_flow(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        alert_id = _raise_alert(client)["alert_id"]
        url = f"/api/v1/alerts/{alert_id}/status"

        resp = client.patch(url, json={"status": "acknowledged"}, headers=_as("R1"))
        assert resp.status_code == 200
        assert resp.json()["assigned_responders"][0]["status"] == "enroute"

        assert client.patch(url, json={"status": "resolved"}, headers=_as("U1")).status_code == 200
        resp = client.patch(url, json={"status": "cancelled"}, headers=_as("U1"))
        assert resp.status_code == 409
        assert resp.json()["error"]["details"] == {
            "current": "resolved", "requested": "cancelled",
        }

    def test_outsider_cannot_change_status(self, client):
        alert_id = _raise_alert(client)["alert_id"]
        resp = client.patch(
            f"/api/v1/alerts/{alert_id}/status", json={"status": "cancelled"},
            headers=_as("U2"),
        )
        assert resp.status_code == 403

    def test_assignment_progress(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        alert_id = _raise_alert(client)["alert_id"]
        resp = client.patch(
            f"/api/v1/alerts/{alert_id}/assignments/me", json={"status": "on-scene"},
            headers=_as("R1"),
        )
        assert resp.status_code == 200
        assignment = resp.json()["assigned_responders"][0]
        assert assignment["status"] == "on-scene"
        assert assignment["arrived_at"] is not None

    def test_messages(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        alert_id = _raise_alert(client)["alert_id"]
        url = f"/api/v1/alerts/{alert_id}/messages"

        resp = client.post(url, json={"content": "Side entrance"}, headers=_as("U1"))
        assert resp.status_code == 201
        assert resp.json()["messages"][0]["content"] == "Side entrance"
        assert client.post(url, json={"content": "x" * 1001}, headers=_as("U1")).status_code == 422
        assert client.post(url, json={"content": "hi"}, headers=_as("U2")).status_code == 403

    def test_delete(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        alert_id = _raise_alert(client)["alert_id"]

        assert client.delete(f"/api/v1/alerts/{alert_id}", headers=_as("R1")).status_code == 403
        resp = client.delete(f"/api/v1/alerts/{alert_id}", headers=_as("U1"))
        assert resp.status_code == 204
        assert resp.content == b""
        assert client.get(f"/api/v1/alerts/{alert_id}", headers=_as("U1")).status_code == 404
        assert services.responders.get("R1").status.value == "available"

    def test_unassigned_and_rematch(self, client, services):
        alert_id = _raise_alert(client)["alert_id"]
        queue = client.get("/api/v1/alerts/unassigned", headers=_as("ops")).json()
        assert [a["alert_id"] for a in queue["alerts"]] == [alert_id]

        add_responder(services, "R1", offset(WESTMINSTER, east_m=400))
        resp = client.post(f"/api/v1/alerts/{alert_id}/rematch", headers=_as("ops"))
        assert resp.status_code == 200
        assert [a["responder_id"] for a in resp.json()["assigned_responders"]] == ["R1"]
        assert client.get("/api/v1/alerts/unassigned", headers=_as("ops")).json()["count"] == 0

    def test_tracking_history_and_nearby(self, client, services):
        add_responder(services, "R1", TOWER_BRIDGE)
        alert_id = _raise_alert(client, coordinates=LONDON_BRIDGE)["alert_id"]
        client.post(
            "/api/v1/locations",
            json={"role": "responder", "coordinates": TOWER_BRIDGE, "alert_id": alert_id},
            headers=_as("R1"),
        )

        view = client.get(f"/api/v1/alerts/{alert_id}/tracking", headers=_as("U1")).json()
        assert view["distance_km"] == pytest.approx(0.892, abs=0.01)
        assert view["estimated_arrival"] == "2 minutes"
        assert view["static_map_url"].endswith("m=UR")

        history = client.get(f"/api/v1/alerts/{alert_id}/history", headers=_as("R1")).json()
        assert history["count"] == 2

        nearby = client.get(
            f"/api/v1/alerts/{alert_id}/nearby-services", headers=_as("U1"),
        ).json()
        assert len(nearby["hospital"]) == 3
        assert len(nearby["police"]) == 2


# ═══════════════════════════════════════════════════════════════════════════
# Locations
# ═══════════════════════════════════════════════════════════════════════════

class TestLocationRoutes:

    def test_ping_and_history(self, client):
        start = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        for point in (WESTMINSTER, LONDON_BRIDGE):
            resp = client.post(
                "/api/v1/locations",
                json={"coordinates": point, "accuracy": 5, "battery_level": 80},
                headers=_as("U5"),
            )
            assert resp.status_code == 200
            assert resp.json()["accuracy"]["is_trustworthy"] is True
        end = (datetime.now(timezone.utc) + timedelta(minutes=1)).isoformat()

        history = client.get("/api/v1/locations/history", headers=_as("U5")).json()
        assert history["count"] == 2
        assert history["history"][0]["location"]["coordinates"] == LONDON_BRIDGE

        distance = client.get(
            "/api/v1/locations/distance", params={"start": start, "end": end},
            headers=_as("U5"),
        ).json()
        assert distance["points"] == 2
        assert distance["total_distance_km"] > 2

    def test_ping_against_foreign_alert_is_recorded(self, client):
        alert_id = _raise_alert(client, coordinates=LONDON_BRIDGE)["alert_id"]
        resp = client.post(
            "/api/v1/locations",
            json={"coordinates": TOWER_BRIDGE, "alert_id": alert_id},
            headers=_as("U2"),
        )
        assert resp.status_code == 200
        assert resp.json()["applied"] is True
        assert resp.json()["correlated_alert_updated"] is False
        assert client.get("/api/v1/locations/history", headers=_as("U2")).json()["count"] == 1

    def test_bad_battery(self, client):
        resp = client.post(
            "/api/v1/locations",
            json={"coordinates": WESTMINSTER, "battery_level": 120},
            headers=_as("U5"),
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "battery_level"

    def test_trusted_location_crud_and_geofence(self, client):
        resp = client.post(
            "/api/v1/locations/trusted",
            json={"name": "Home", "coordinates": WESTMINSTER, "radius_m": 150, "is_home": True},
            headers=_as("U1"),
        )
        assert resp.status_code == 201
        location_id = resp.json()["location_id"]

        check = client.post(
            "/api/v1/locations/geofence/check",
            json={"coordinates": offset(WESTMINSTER, north_m=100)},
            headers=_as("U1"),
        ).json()
        assert check["is_inside"] is True
        assert check["matched_location"]["name"] == "Home"

        resp = client.patch(
            f"/api/v1/locations/trusted/{location_id}", json={"radius_m": 50},
            headers=_as("U1"),
        )
        assert resp.json()["radius_m"] == 50.0
        assert resp.json()["is_home"] is True
        check = client.post(
            "/api/v1/locations/geofence/check",
            json={"coordinates": offset(WESTMINSTER, north_m=100)},
            headers=_as("U1"),
        ).json()
        assert check == {"is_inside": False, "matched_location": None}

        assert client.patch(
            f"/api/v1/locations/trusted/{location_id}", json={"radius_m": 5},
            headers=_as("U1"),
        ).status_code == 422
        assert client.delete(
            f"/api/v1/locations/trusted/{location_id}", headers=_as("U2"),
        ).status_code == 404
        assert client.delete(
            f"/api/v1/locations/trusted/{location_id}", headers=_as("U1"),
        ).status_code == 204
        assert client.get("/api/v1/locations/trusted", headers=_as("U1")).json() == {
            "count": 0, "locations": [],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Responders
# ═══════════════════════════════════════════════════════════════════════════

class TestResponderRoutes:

    def test_register_toggle_heartbeat(self, client):
        resp = client.put(
            "/api/v1/responders/me",
            json={"vehicle_type": "motorcycle", "coordinates": WESTMINSTER},
            headers=_as("R1"),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "offline"

        resp = client.patch(
            "/api/v1/responders/me/status", json={"status": "available"}, headers=_as("R1"),
        )
        assert resp.json()["status"] == "available"
        assert client.post("/api/v1/responders/me/heartbeat", headers=_as("R1")).status_code == 200
        assert client.get("/api/v1/responders/me", headers=_as("R1")).json()["vehicle_type"] == (
            "motorcycle"
        )

    def test_unknown_responder(self, client):
        assert client.get("/api/v1/responders/me", headers=_as("R-GHOST")).status_code == 404

    def test_busy_responder_cannot_go_offline(self, client, services):
        add_responder(services, "R1", offset(WESTMINSTER, north_m=200))
        _raise_alert(client)
        resp = client.patch(
            "/api/v1/responders/me/status", json={"status": "offline"}, headers=_as("R1"),
        )
        assert resp.status_code == 409

    def test_nearby(self, client, services):
        add_responder(services, "near", offset(WESTMINSTER, north_m=300))
        add_responder(services, "far", offset(WESTMINSTER, north_m=9000))
        resp = client.get(
            "/api/v1/responders/nearby",
            params={"lng": WESTMINSTER[0], "lat": WESTMINSTER[1], "radius_m": 1000},
            headers=_as("ops"),
        ).json()
        assert resp["count"] == 1
        assert resp["responders"][0]["responder_id"] == "near"
        assert resp["responders"][0]["distance_m"] == pytest.approx(300, abs=1.0)

    def test_sweep(self, client, services):
        add_responder(
            services, "stale", WESTMINSTER,
            last_ping=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        resp = client.post("/api/v1/responders/sweep", json={}, headers=_as("ops")).json()
        assert resp == {"count": 1, "responder_ids": ["stale"]}


# ═══════════════════════════════════════════════════════════════════════════
# Root and health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert "alert-lifecycle" in body["modules"]

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        names = {c["name"]: c["status"] for c in body["components"]}
        assert names == {"database": "healthy", "redis": "healthy", "integrations": "healthy"}

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client):
        assert client.get("/health/ready").status_code == 200
