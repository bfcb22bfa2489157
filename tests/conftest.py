"""
Shared fixtures: in-memory database, recording notifier, stub geocoder.

Every test gets a fresh SQLite in-memory database and services wired with
``background=False`` so notifications and enrichment run inline.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import pytest

from guardian_backend.app.alerts.models import (
    NotificationIntent,
    NotificationKind,
    ResponderAvailability,
    ResponderStatus,
)
from guardian_backend.app.alerts.notifications import Notifier
from guardian_backend.app.container import Services, build_services
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.database import Database
from guardian_backend.app.core.errors import UpstreamUnavailable
from guardian_backend.app.integrations.geocoder import GeoAddress, Geocoder, MapMarker, Place
from guardian_backend.app.spatial.radius_utils import Coordinate, distance_m


# ═══════════════════════════════════════════════════════════════════════════
# Landmarks (lng, lat)
# ═══════════════════════════════════════════════════════════════════════════

WESTMINSTER = [-0.1181, 51.4988]
LONDON_BRIDGE = [-0.0877, 51.5079]
TOWER_BRIDGE = [-0.0754, 51.5055]


# ═══════════════════════════════════════════════════════════════════════════
# Test doubles
# ═══════════════════════════════════════════════════════════════════════════

class RecordingNotifier(Notifier):
    """Keeps every intent it is handed."""

    name = "recording"

    def __init__(self) -> None:
        self.intents: List[NotificationIntent] = []
        self._lock = threading.Lock()

    def notify(self, intent: NotificationIntent) -> None:
        with self._lock:
            self.intents.append(intent)

    def of_kind(self, kind: NotificationKind) -> List[NotificationIntent]:
        return [i for i in self.intents if i.kind == kind]

    def for_target(self, target_id: str) -> List[NotificationIntent]:
        return [i for i in self.intents if i.target_id == target_id]

    def events(self, target_id: Optional[str] = None) -> List[str]:
        return [
            i.payload.get("event") for i in self.intents
            if i.kind == NotificationKind.STATUS_UPDATE
            and (target_id is None or i.target_id == target_id)
        ]

    def clear(self) -> None:
        with self._lock:
            self.intents.clear()


class StubGeocoder(Geocoder):
    """Deterministic addresses, maps and places."""

    name = "stub"

    def __init__(self) -> None:
        self.reverse_calls = 0

    def reverse_geocode(self, point: Coordinate) -> Optional[GeoAddress]:
        self.reverse_calls += 1
        return GeoAddress(
            formatted_address=f"{point.latitude:.4f}, {point.longitude:.4f}, London",
            place_id=f"stub-{point.latitude:.3f}-{point.longitude:.3f}",
        )

    def static_map_url(
        self,
        center: Coordinate,
        markers: Sequence[MapMarker] = (),
        *,
        zoom: int = 15,
        size: str = "600x300",
    ) -> Optional[str]:
        labels = "".join(m.label for m in markers)
        return f"https://maps.test/static?c={center.latitude},{center.longitude}&m={labels}"

    def nearby_places(self, center: Coordinate, radius_m: float, category: str) -> List[Place]:
        places = []
        for i in range(5):
            coord = Coordinate(center.latitude + 0.001 * (i + 1), center.longitude)
            places.append(Place(
                name=f"{category.title()} {i + 1}",
                place_id=f"{category}-{i + 1}",
                coordinate=coord,
                distance_m=distance_m(center, coord),
            ))
        return places


class FailingGeocoder(Geocoder):
    """Every call fails the way a provider outage does."""

    name = "failing"

    def reverse_geocode(self, point):
        raise UpstreamUnavailable(self.name, "connection refused")

    def static_map_url(self, center, markers=(), *, zoom=15, size="600x300"):
        raise UpstreamUnavailable(self.name, "connection refused")

    def nearby_places(self, center, radius_m, category):
        raise UpstreamUnavailable(self.name, "connection refused")


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "ENVIRONMENT": "testing",
        "DEBUG": False,
        "REDIS_URL": None,
        "GEOCODER_PROVIDER": "none",
        "NOTIFIER_WEBHOOK_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_services(
    settings: Optional[Settings] = None,
    geocoder: Optional[Geocoder] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    settings = settings or make_settings()
    database = Database(settings.DATABASE_URL)
    database.create_all()
    return build_services(
        settings,
        database=database,
        geocoder=geocoder or StubGeocoder(),
        notifier=notifier or RecordingNotifier(),
        background=False,
    )


def add_responder(
    services: Services,
    responder_id: str,
    lnglat: Sequence[float],
    *,
    status: ResponderStatus = ResponderStatus.AVAILABLE,
    vehicle_type: Optional[str] = "car",
    last_ping: Optional[datetime] = None,
    is_active: bool = True,
) -> ResponderAvailability:
    """Insert a responder row directly, bypassing the availability service."""
    now = datetime.now(timezone.utc)
    responder = ResponderAvailability(
        responder_id=responder_id,
        status=status,
        is_active=is_active,
        current_location=Coordinate.from_lnglat(lnglat),
        location_updated_at=now,
        last_ping=last_ping or now,
        vehicle_type=vehicle_type,
    )
    with services.store.unit_of_work() as uow:
        uow.upsert_responder(responder)
    return responder


def offset(lnglat: Sequence[float], *, north_m: float = 0.0, east_m: float = 0.0) -> List[float]:
    """Shift a point by a small number of metres (equirectangular)."""
    lng, lat = lnglat
    d_lat = north_m / 111_195.0
    d_lng = east_m / (111_195.0 * math.cos(math.radians(lat)))
    return [lng + d_lng, lat + d_lat]


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def geocoder() -> StubGeocoder:
    return StubGeocoder()


@pytest.fixture
def services(settings, geocoder, notifier) -> Services:
    svc = make_services(settings, geocoder=geocoder, notifier=notifier)
    yield svc
    svc.close()
