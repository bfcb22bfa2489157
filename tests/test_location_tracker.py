"""
test_location_tracker.py — Pings, live tracking, proximity debounce, history.

Run with:
    pytest tests/test_location_tracker.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from guardian_backend.app.alerts.models import NotificationKind, SubjectRole
from guardian_backend.app.core.errors import ForbiddenError, NotFoundError, ValidationError
from guardian_backend.app.spatial.radius_utils import Coordinate, haversine_km
from guardian_backend.app.tracking.location_tracker import verify_location_accuracy

from conftest import LONDON_BRIDGE, TOWER_BRIDGE, WESTMINSTER, add_responder, offset


def _make_alert(services, responder_at=TOWER_BRIDGE, vehicle_type="car"):
    add_responder(services, "R1", responder_at, vehicle_type=vehicle_type)
    alert = services.lifecycle.create_alert("U1", LONDON_BRIDGE, accuracy=10)
    assert alert.responder_ids() == ["R1"]
    return alert


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Accuracy heuristics
# ═══════════════════════════════════════════════════════════════════════════

class TestVerifyLocationAccuracy:

    def test_good_fix(self):
        check = verify_location_accuracy(Coordinate(51.5, -0.1), 15)
        assert check.confidence == 100
        assert check.is_trustworthy
        assert check.issues == []

    @pytest.mark.parametrize("accuracy,expected", [(600, 85), (1500, 70)])
    def test_poor_accuracy(self, accuracy, expected):
        assert verify_location_accuracy(Coordinate(51.5, -0.1), accuracy).confidence == expected

    def test_boundary_is_untrustworthy(self):
        assert not verify_location_accuracy(Coordinate(51.5, -0.1), 1500).is_trustworthy

    def test_null_island(self):
        check = verify_location_accuracy(Coordinate(0.0, 0.0), 5)
        assert check.confidence == 60
        assert "Coordinates at null island (0, 0)" in check.issues

    def test_extreme_latitude(self):
        assert verify_location_accuracy(Coordinate(89.0, 10.0), 5).confidence == 90


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Pings
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateLocation:

    def test_responder_ping_computes_distance_and_eta(self, services):
        alert = _make_alert(services)
        result = services.tracker.update_location(
            "R1", "responder", TOWER_BRIDGE, accuracy=8, alert_id=alert.alert_id,
        )
        assert result.correlated_alert_updated
        assert result.distance_km == pytest.approx(0.892, abs=0.01)
        assert result.estimated_arrival == "2 minutes"

        tracking = services.lifecycle.get_alert(alert.alert_id).tracking
        assert tracking.last_responder_location.to_lnglat() == TOWER_BRIDGE
        assert tracking.last_user_location.to_lnglat() == LONDON_BRIDGE
        assert tracking.last_responder_id == "R1"

    def test_no_eta_without_vehicle(self, services):
        alert = _make_alert(services, vehicle_type=None)
        result = services.tracker.update_location(
            "R1", "responder", TOWER_BRIDGE, alert_id=alert.alert_id,
        )
        assert result.distance_km is not None
        assert result.estimated_arrival is None

    def test_user_ping_moves_user_side(self, services):
        alert = _make_alert(services)
        services.tracker.update_location("R1", "responder", TOWER_BRIDGE, alert_id=alert.alert_id)
        result = services.tracker.update_location(
            "U1", "user", WESTMINSTER, alert_id=alert.alert_id,
        )
        expected = haversine_km(
            Coordinate.from_lnglat(WESTMINSTER), Coordinate.from_lnglat(TOWER_BRIDGE),
        )
        assert result.distance_km == pytest.approx(expected)
        with services.store.unit_of_work() as uow:
            assert uow.get_user_location("U1").coordinate.to_lnglat() == WESTMINSTER

    def test_responder_location_and_heartbeat_refreshed(self, services):
        stale = datetime.now(timezone.utc) - timedelta(hours=1)
        add_responder(services, "R1", WESTMINSTER, last_ping=stale)
        services.tracker.update_location("R1", "responder", LONDON_BRIDGE)
        r = services.responders.get("R1")
        assert r.current_location.to_lnglat() == LONDON_BRIDGE
        assert r.last_ping > stale

    def test_without_alert_only_history(self, services):
        result = services.tracker.update_location("U5", "user", WESTMINSTER)
        assert result.applied
        assert not result.correlated_alert_updated
        assert result.distance_km is None
        assert len(services.tracker.get_subject_history("U5")) == 1

    def test_outsider_ping_applied_without_tracking(self, services):
        alert = _make_alert(services)
        start = offset(LONDON_BRIDGE, north_m=90000)
        ping = offset(LONDON_BRIDGE, north_m=80000)
        add_responder(services, "R9", start)
        before = services.lifecycle.get_alert(alert.alert_id).tracking

        result = services.tracker.update_location(
            "R9", "responder", ping, alert_id=alert.alert_id,
        )
        assert result.applied
        assert not result.correlated_alert_updated
        assert result.distance_km is None

        assert services.responders.get("R9").current_location.to_lnglat() == ping
        records = services.tracker.get_subject_history("R9")
        assert len(records) == 1
        assert records[0].alert_id is None
        assert services.lifecycle.get_alert(alert.alert_id).tracking == before
        assert services.tracker.get_alert_history(alert.alert_id, "U1") == []

    def test_outsider_user_ping_applied(self, services):
        alert = _make_alert(services)
        result = services.tracker.update_location(
            "U2", "user", TOWER_BRIDGE, alert_id=alert.alert_id,
        )
        assert not result.correlated_alert_updated
        assert len(services.tracker.get_subject_history("U2")) == 1
        tracking = services.lifecycle.get_alert(alert.alert_id).tracking
        assert tracking.last_user_location.to_lnglat() == LONDON_BRIDGE

    def test_unknown_responder(self, services):
        with pytest.raises(NotFoundError):
            services.tracker.update_location("R-GHOST", "responder", TOWER_BRIDGE)

    def test_unknown_alert_rolls_back(self, services):
        add_responder(services, "R1", WESTMINSTER)
        with pytest.raises(NotFoundError):
            services.tracker.update_location(
                "R1", "responder", TOWER_BRIDGE, alert_id="ALR-MISSING",
            )
        assert services.responders.get("R1").current_location.to_lnglat() == WESTMINSTER
        assert services.tracker.get_subject_history("R1") == []

    def test_terminal_alert_records_history_only(self, services):
        alert = _make_alert(services)
        services.lifecycle.transition_status(alert.alert_id, "resolved")
        before = services.lifecycle.get_alert(alert.alert_id).tracking

        result = services.tracker.update_location(
            "U1", "user", TOWER_BRIDGE, alert_id=alert.alert_id,
        )
        assert not result.correlated_alert_updated
        assert services.lifecycle.get_alert(alert.alert_id).tracking == before
        records = services.tracker.get_subject_history("U1")
        assert records[0].coordinate.to_lnglat() == TOWER_BRIDGE
        assert [r.alert_id for r in records] == [alert.alert_id, alert.alert_id]

    @pytest.mark.parametrize("battery", [-1, 101, 50.5, True, "80"])
    def test_bad_battery(self, services, battery):
        with pytest.raises(ValidationError):
            services.tracker.update_location("U1", "user", WESTMINSTER, battery_level=battery)

    @pytest.mark.parametrize("battery", [0, 100])
    def test_battery_bounds(self, services, battery):
        services.tracker.update_location("U1", "user", WESTMINSTER, battery_level=battery)
        assert services.tracker.get_subject_history("U1")[0].battery_level == battery

    @pytest.mark.parametrize("kwargs", [
        {"role": "dispatcher"},
        {"coordinates": [51.5, 181.0]},
        {"accuracy": float("inf")},
    ])
    def test_bad_input(self, services, kwargs):
        args = {"role": "user", "coordinates": WESTMINSTER, "accuracy": 0.0, **kwargs}
        with pytest.raises(ValidationError):
            services.tracker.update_location("U1", **args)

    def test_suspicious_fix_still_recorded(self, services):
        result = services.tracker.update_location("U1", "user", [0.0, 0.0], accuracy=2000)
        assert not result.accuracy.is_trustworthy
        assert len(services.tracker.get_subject_history("U1")) == 1

    def test_trusted_location_reported_for_users(self, services):
        services.trusted_locations.add_trusted_location("U1", "Home", WESTMINSTER, radius_m=200)
        result = services.tracker.update_location("U1", "user", offset(WESTMINSTER, north_m=50))
        assert result.trusted_location.name == "Home"
        assert result.to_dict()["trusted_location"]["name"] == "Home"

        away = services.tracker.update_location("U1", "user", TOWER_BRIDGE)
        assert away.trusted_location is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Proximity debounce
# ═══════════════════════════════════════════════════════════════════════════

class TestProximity:

    def _ping(self, services, alert, north_m):
        return services.tracker.update_location(
            "R1", "responder", offset(LONDON_BRIDGE, north_m=north_m), alert_id=alert.alert_id,
        )

    def test_emitted_once_per_approach(self, services, notifier):
        alert = _make_alert(services, responder_at=offset(LONDON_BRIDGE, north_m=3000))
        notifier.clear()

        flags = [self._ping(services, alert, m).proximity_notified
                 for m in (3000, 500, 700, 1100, 900)]
        assert flags == [False, True, False, False, False]

        intents = notifier.of_kind(NotificationKind.PROXIMITY)
        assert len(intents) == 1
        assert intents[0].target_id == "U1"
        assert intents[0].payload["responder_id"] == "R1"
        assert intents[0].payload["distance_km"] == pytest.approx(0.5, abs=0.01)
        assert intents[0].payload["estimated_arrival"].endswith("minutes")

    def test_rearmed_after_moving_away(self, services, notifier):
        alert = _make_alert(services, responder_at=offset(LONDON_BRIDGE, north_m=3000))
        notifier.clear()
        flags = [self._ping(services, alert, m).proximity_notified
                 for m in (500, 1500, 800)]
        assert flags == [True, False, True]
        assert len(notifier.of_kind(NotificationKind.PROXIMITY)) == 2

    def test_flag_persisted_on_assignment(self, services):
        alert = _make_alert(services, responder_at=offset(LONDON_BRIDGE, north_m=3000))
        self._ping(services, alert, 400)
        slot = services.lifecycle.get_alert(alert.alert_id).assignment_for("R1")
        assert slot.proximity_notified
        assert slot.last_location.to_lnglat() == offset(LONDON_BRIDGE, north_m=400)
        self._ping(services, alert, 1300)
        assert not services.lifecycle.get_alert(alert.alert_id).assignment_for("R1").proximity_notified


class TestProximityWithSeveralResponders:

    @pytest.fixture
    def alert(self, services):
        add_responder(services, "R1", offset(LONDON_BRIDGE, north_m=3000))
        add_responder(services, "R2", offset(LONDON_BRIDGE, east_m=4000))
        alert = services.lifecycle.create_alert("U1", LONDON_BRIDGE)
        assert sorted(alert.responder_ids()) == ["R1", "R2"]
        return alert

    def _ping(self, services, alert, responder_id, **shift):
        return services.tracker.update_location(
            responder_id, "responder", offset(LONDON_BRIDGE, **shift), alert_id=alert.alert_id,
        )

    def test_far_responder_does_not_rearm_near_one(self, services, notifier, alert):
        notifier.clear()
        for _ in range(3):
            self._ping(services, alert, "R1", north_m=500)
            far = self._ping(services, alert, "R2", east_m=5000)
            assert far.distance_km == pytest.approx(5.0, abs=0.05)

        intents = notifier.of_kind(NotificationKind.PROXIMITY)
        assert len(intents) == 1
        assert intents[0].payload["responder_id"] == "R1"

    def test_each_responder_gets_own_approach(self, services, notifier, alert):
        notifier.clear()
        assert self._ping(services, alert, "R1", north_m=500).proximity_notified
        assert self._ping(services, alert, "R2", east_m=300).proximity_notified
        assert not self._ping(services, alert, "R1", north_m=400).proximity_notified

        intents = notifier.of_kind(NotificationKind.PROXIMITY)
        assert [i.payload["responder_id"] for i in intents] == ["R1", "R2"]

    def test_user_ping_measures_every_responder(self, services, notifier, alert):
        self._ping(services, alert, "R1", north_m=2000)
        self._ping(services, alert, "R2", east_m=3000)
        notifier.clear()

        result = services.tracker.update_location(
            "U1", "user", offset(LONDON_BRIDGE, north_m=1500), alert_id=alert.alert_id,
        )
        assert result.distance_km == pytest.approx(0.5, abs=0.01)
        assert result.proximity_notified
        intents = notifier.of_kind(NotificationKind.PROXIMITY)
        assert [i.payload["responder_id"] for i in intents] == ["R1"]

        stored = services.lifecycle.get_alert(alert.alert_id)
        assert stored.assignment_for("R1").proximity_notified
        assert not stored.assignment_for("R2").proximity_notified


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Live tracking and history
# ═══════════════════════════════════════════════════════════════════════════

class TestLiveTracking:

    def test_before_responder_ping(self, services):
        alert = _make_alert(services)
        view = services.tracker.get_live_tracking(alert.alert_id, "U1")
        assert view.user_location.to_lnglat() == LONDON_BRIDGE
        assert view.responder_location is None
        assert view.distance_km is None
        assert view.responder_address is None
        assert view.static_map_url.endswith("m=U")

    def test_full_view(self, services):
        alert = _make_alert(services)
        services.tracker.update_location("R1", "responder", TOWER_BRIDGE, alert_id=alert.alert_id)

        view = services.tracker.get_live_tracking(alert.alert_id, "R1")
        assert view.responder_id == "R1"
        assert view.distance_km == pytest.approx(0.892, abs=0.01)
        assert view.estimated_arrival == "2 minutes"
        assert view.user_address.endswith("London")
        assert view.responder_address.endswith("London")
        assert view.static_map_url.endswith("m=UR")
        assert view.to_dict()["responder_location"]["coordinates"] == TOWER_BRIDGE

    def test_outsider_forbidden(self, services):
        alert = _make_alert(services)
        with pytest.raises(ForbiddenError):
            services.tracker.get_live_tracking(alert.alert_id, "U2")

    def test_unknown_alert(self, services):
        with pytest.raises(NotFoundError):
            services.tracker.get_live_tracking("ALR-MISSING", "U1")


class TestHistory:

    def _walk(self, services, subject="U5"):
        for point in (WESTMINSTER, LONDON_BRIDGE, TOWER_BRIDGE):
            services.tracker.update_location(subject, "user", point)

    def test_newest_first_with_limit(self, services):
        self._walk(services)
        records = services.tracker.get_subject_history("U5")
        assert [r.coordinate.to_lnglat() for r in records] == [
            TOWER_BRIDGE, LONDON_BRIDGE, WESTMINSTER,
        ]
        assert len(services.tracker.get_subject_history("U5", limit=2)) == 2

    def test_time_window(self, services):
        self._walk(services)
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert services.tracker.get_subject_history("U5", start=future) == []
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        assert services.tracker.get_subject_history("U5", end=past) == []

    def test_alert_history_oldest_first(self, services):
        alert = _make_alert(services)
        services.tracker.update_location("R1", "responder", TOWER_BRIDGE, alert_id=alert.alert_id)
        records = services.tracker.get_alert_history(alert.alert_id, "U1")
        assert [(r.subject_id, r.role) for r in records] == [
            ("U1", SubjectRole.USER), ("R1", SubjectRole.RESPONDER),
        ]

    def test_alert_history_participants_only(self, services):
        alert = _make_alert(services)
        with pytest.raises(ForbiddenError):
            services.tracker.get_alert_history(alert.alert_id, "U2")

    def test_distance_traveled(self, services):
        start = datetime.now(timezone.utc) - timedelta(seconds=1)
        self._walk(services)
        end = datetime.now(timezone.utc) + timedelta(seconds=1)

        w, l, t = (Coordinate.from_lnglat(p) for p in (WESTMINSTER, LONDON_BRIDGE, TOWER_BRIDGE))
        expected = haversine_km(w, l) + haversine_km(l, t)

        summary = services.tracker.distance_traveled("U5", start, end)
        assert summary["points"] == 3
        assert summary["total_distance_km"] == pytest.approx(expected, abs=0.01)

    def test_distance_traveled_empty(self, services):
        now = datetime.now(timezone.utc)
        summary = services.tracker.distance_traveled("nobody", now - timedelta(hours=1), now)
        assert summary == {
            "subject_id": "nobody",
            "total_distance_km": 0.0,
            "average_speed_kmh": 0.0,
            "points": 0,
        }

    def test_distance_traveled_reversed_window(self, services):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            services.tracker.distance_traveled("U5", now, now - timedelta(hours=1))
