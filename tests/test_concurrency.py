"""
Concurrency tests: simultaneous alerts competing for the same responders,
and racing status changes on one alert.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from guardian_backend.app.alerts.models import AlertStatus, NotificationKind, ResponderStatus
from guardian_backend.app.core.errors import InvalidTransitionError

from conftest import LONDON_BRIDGE, WESTMINSTER, add_responder, offset


class TestConcurrentCreation:

    def test_no_responder_claimed_twice(self, services, notifier):
        for i in range(12):
            add_responder(services, f"R{i:02d}", offset(WESTMINSTER, north_m=150 * (i + 1)))

        def raise_alert(n):
            return services.lifecycle.create_alert(
                f"U{n}", offset(WESTMINSTER, east_m=20 * n),
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            alerts = [f.result() for f in as_completed(
                [pool.submit(raise_alert, n) for n in range(10)]
            )]

        assigned = [rid for a in alerts for rid in a.responder_ids()]
        assert len(assigned) == len(set(assigned))
        assert len(assigned) == 12

        for alert in alerts:
            stored = services.lifecycle.get_alert(alert.alert_id)
            assert stored.responder_ids() == alert.responder_ids()
            assert len(stored.responder_ids()) <= 5
            for rid in stored.responder_ids():
                r = services.responders.get(rid)
                assert r.status == ResponderStatus.BUSY
                assert r.assigned_alert_id == alert.alert_id

        escalated = {i.alert_id for i in notifier.of_kind(NotificationKind.NO_RESPONDERS)}
        empty = {a.alert_id for a in alerts if not a.assigned_responders}
        assert escalated == empty

    def test_claims_and_releases_interleaved(self, services):
        for i in range(6):
            add_responder(services, f"R{i}", offset(LONDON_BRIDGE, east_m=100 * (i + 1)))
        errors = []

        def raise_and_close(n):
            try:
                alert = services.lifecycle.create_alert(f"U{n}", LONDON_BRIDGE)
                services.lifecycle.transition_status(alert.alert_id, "resolved")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=raise_and_close, args=(n,)) for n in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        for i in range(6):
            r = services.responders.get(f"R{i}")
            assert r.status == ResponderStatus.AVAILABLE
            assert r.assigned_alert_id is None


class TestConcurrentTransitions:

    @pytest.mark.parametrize("targets", [
        ["resolved"] * 6,
        ["resolved", "cancelled"] * 4,
    ])
    def test_single_winner(self, services, notifier, targets):
        for i in range(3):
            add_responder(services, f"R{i}", offset(WESTMINSTER, north_m=200 * (i + 1)))
        alert = services.lifecycle.create_alert("U1", WESTMINSTER)
        notifier.clear()

        won, lost = [], []
        lock = threading.Lock()

        def attempt(status):
            try:
                services.lifecycle.transition_status(alert.alert_id, status)
                outcome = won
            except InvalidTransitionError:
                outcome = lost
            with lock:
                outcome.append(status)

        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            list(pool.map(attempt, targets))

        assert len(won) == 1
        assert len(lost) == len(targets) - 1
        final = services.lifecycle.get_alert(alert.alert_id)
        assert final.status == AlertStatus(won[0])
        for i in range(3):
            assert services.responders.get(f"R{i}").status == ResponderStatus.AVAILABLE
        # one round of status-updates: owner plus three responders
        assert len(notifier.intents) == 4

    def test_pings_during_resolution(self, services):
        add_responder(services, "R1", offset(LONDON_BRIDGE, north_m=3000))
        alert = services.lifecycle.create_alert("U1", LONDON_BRIDGE)
        errors = []

        def ping(step):
            try:
                services.tracker.update_location(
                    "R1", "responder", offset(LONDON_BRIDGE, north_m=3000 - 100 * step),
                    alert_id=alert.alert_id,
                )
            except Exception as e:  # pragma: no cover
                errors.append(e)

        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(ping, s) for s in range(20)]
            futures.append(pool.submit(
                services.lifecycle.transition_status, alert.alert_id, "resolved",
            ))
            for f in futures:
                f.result()

        assert errors == []
        assert services.lifecycle.get_alert(alert.alert_id).status == AlertStatus.RESOLVED
        assert len(services.tracker.get_subject_history("R1")) == 20
