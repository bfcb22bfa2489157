"""
notifications.py — Notifier boundary and intent fan-out.

The core decides *who* is told *what*; it never decides how delivery
happens. Each decision is a ``NotificationIntent``:

    {target_id, kind, payload}     kind ∈ new-assignment | status-update
                                          | proximity | no-responders

Intents are handed to ``NotificationDispatcher`` only after the unit of
work that produced them has committed. Dispatch is fire-and-forget: a
failing or slow notifier is logged and never rolls anything back.

Notifiers:
    LoggingNotifier  — development simulation, logs every intent
    WebhookNotifier  — POSTs the intent JSON to a delivery service
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from typing import Any, Dict, Iterable, Optional

import httpx

from guardian_backend.app.alerts.models import (
    Alert,
    AlertStatus,
    NotificationIntent,
    NotificationKind,
)
from guardian_backend.app.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Notifiers
# ═══════════════════════════════════════════════════════════════════════════

class Notifier(ABC):
    """Abstract delivery boundary."""

    name = "notifier"

    @abstractmethod
    def notify(self, intent: NotificationIntent) -> None:
        pass

    def close(self) -> None:
        pass


class LoggingNotifier(Notifier):
    """Simulated delivery for development: log and return."""

    name = "logging"

    def notify(self, intent: NotificationIntent) -> None:
        logger.info(
            "[NOTIFY] %s → %s (alert %s)",
            intent.kind.value, intent.target_id, intent.alert_id,
            extra={
                "kind": intent.kind.value,
                "target_id": intent.target_id,
                "alert_id": intent.alert_id,
            },
        )


class WebhookNotifier(Notifier):
    """POST each intent to a delivery service."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def notify(self, intent: NotificationIntent) -> None:
        try:
            response = self._client.post(self.url, json=intent.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(
                self.name, str(e), kind=intent.kind.value, target_id=intent.target_id,
            ) from e

    def close(self) -> None:
        self._client.close()


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """
    Fan intents out to a notifier without blocking the caller.

    Parameters
    ----------
    notifier : Notifier
        Delivery boundary.
    executor : Executor | None
        Background executor; None delivers inline (tests, scripts).
    """

    def __init__(self, notifier: Notifier, executor: Optional[Executor] = None):
        self.notifier = notifier
        self._executor = executor

    def dispatch(self, intents: Iterable[NotificationIntent]) -> int:
        """Hand over every intent; returns how many were queued."""
        count = 0
        for intent in intents:
            if self._executor is None:
                self._deliver(intent)
            else:
                self._executor.submit(self._deliver, intent)
            count += 1
        return count

    def _deliver(self, intent: NotificationIntent) -> None:
        try:
            self.notifier.notify(intent)
        except Exception as e:
            logger.error(
                "Notification %s → %s dropped: %s",
                intent.kind.value, intent.target_id, e,
                extra={"alert_id": intent.alert_id, "kind": intent.kind.value},
            )


# ═══════════════════════════════════════════════════════════════════════════
# Intent builders
# ═══════════════════════════════════════════════════════════════════════════

def _alert_summary(alert: Alert) -> Dict[str, Any]:
    return {
        "alert_id": alert.alert_id,
        "alert_type": alert.alert_type.value,
        "status": alert.status.value,
        "location": alert.location.to_dict(),
    }


def new_assignment_intent(
    alert: Alert, responder_id: str, distance_km: Optional[float] = None,
) -> NotificationIntent:
    payload = {**_alert_summary(alert), "user_id": alert.user_id}
    if distance_km is not None:
        payload["distance_km"] = round(distance_km, 2)
    return NotificationIntent(
        target_id=responder_id,
        kind=NotificationKind.NEW_ASSIGNMENT,
        payload=payload,
        alert_id=alert.alert_id,
    )


def status_update_intent(
    alert: Alert, target_id: str, event: str, **details: Any,
) -> NotificationIntent:
    return NotificationIntent(
        target_id=target_id,
        kind=NotificationKind.STATUS_UPDATE,
        payload={**_alert_summary(alert), "event": event, **details},
        alert_id=alert.alert_id,
    )


def proximity_intent(
    alert: Alert, responder_id: Optional[str], distance_km: float,
    estimated_arrival: Optional[str],
) -> NotificationIntent:
    return NotificationIntent(
        target_id=alert.user_id,
        kind=NotificationKind.PROXIMITY,
        payload={
            "alert_id": alert.alert_id,
            "responder_id": responder_id,
            "distance_km": round(distance_km, 2),
            "estimated_arrival": estimated_arrival,
        },
        alert_id=alert.alert_id,
    )


def no_responders_intent(alert: Alert, escalation_target: str) -> NotificationIntent:
    return NotificationIntent(
        target_id=escalation_target,
        kind=NotificationKind.NO_RESPONDERS,
        payload={**_alert_summary(alert), "user_id": alert.user_id},
        alert_id=alert.alert_id,
    )


def transition_intents(alert: Alert, previous: AlertStatus) -> list:
    """status-update to the owner and every assigned responder."""
    event = f"status-{alert.status.value}"
    targets = [alert.user_id, *alert.responder_ids()]
    return [
        status_update_intent(alert, t, event, previous_status=previous.value)
        for t in targets
    ]
