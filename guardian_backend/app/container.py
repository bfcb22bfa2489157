"""
container.py — Composition root.

Builds every service exactly once from a ``Settings`` instance and wires
the shared pieces together:

    Settings
      ├── Database ─────────────── DispatchStore
      ├── Redis cache ─┐
      ├── Geocoder ◀───┘ ───────── LocationEnricher ◀── BestEffortRunner ◀── enrichment pool
      ├── Notifier ─────────────── NotificationDispatcher ◀── notification pool
      └── KeyedLock ──┬─────────── AlertLifecycleManager
                      └─────────── LocationTracker

Nothing else constructs these objects; the FastAPI app keeps the result
on ``app.state.services`` and tests build their own with in-memory
collaborators.

Notifications and enrichment run on separate pools; a provider call that
outlives its timeout never occupies a notification worker.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from guardian_backend.app.alerts.geo_fence import GeofenceEvaluator
from guardian_backend.app.alerts.lifecycle import AlertLifecycleManager
from guardian_backend.app.alerts.matcher import ResponderMatcher
from guardian_backend.app.alerts.notifications import (
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    WebhookNotifier,
)
from guardian_backend.app.alerts.responders import ResponderAvailabilityService
from guardian_backend.app.alerts.trusted_locations import TrustedLocationService
from guardian_backend.app.core.cache import GeocodeCache, create_cache
from guardian_backend.app.core.config import Settings
from guardian_backend.app.core.database import Database
from guardian_backend.app.core.locks import KeyedLock
from guardian_backend.app.integrations.enrichment import BestEffortRunner, LocationEnricher
from guardian_backend.app.integrations.geocoder import Geocoder, create_geocoder
from guardian_backend.app.storage.repository import DispatchStore
from guardian_backend.app.tracking.location_tracker import LocationTracker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    database: Database
    store: DispatchStore
    cache: Optional[GeocodeCache]
    geocoder: Geocoder
    notifier: Notifier
    executor: Optional[Executor]
    enrichment_executor: Optional[Executor]
    locks: KeyedLock
    matcher: ResponderMatcher
    dispatcher: NotificationDispatcher
    geofence: GeofenceEvaluator
    enricher: LocationEnricher
    lifecycle: AlertLifecycleManager
    tracker: LocationTracker
    trusted_locations: TrustedLocationService
    responders: ResponderAvailabilityService

    def close(self) -> None:
        """Release threads, HTTP clients and connections."""
        for pool in (self.enrichment_executor, self.executor):
            if isinstance(pool, ThreadPoolExecutor):
                pool.shutdown(wait=True)
        self.notifier.close()
        self.geocoder.close()
        if self.cache is not None:
            self.cache.close()
        self.database.dispose()


def build_services(
    settings: Settings,
    *,
    database: Optional[Database] = None,
    geocoder: Optional[Geocoder] = None,
    notifier: Optional[Notifier] = None,
    executor: Optional[Executor] = None,
    enrichment_executor: Optional[Executor] = None,
    background: bool = True,
) -> Services:
    """
    Wire the engine for ``settings``.

    Parameters
    ----------
    database, geocoder, notifier : optional
        Pre-built collaborators (tests); built from settings otherwise.
    executor : Executor, optional
        Pool for notification delivery.
    enrichment_executor : Executor, optional
        Pool for geocoder calls made under a timeout.
    background : bool
        When False, pools that were not given are not created and that
        I/O runs inline.
    """
    database = database or Database(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
    store = DispatchStore(database)

    cache = None
    if geocoder is None:
        cache = create_cache(settings.REDIS_URL, ttl=settings.GEOCODE_CACHE_TTL)
        geocoder = create_geocoder(
            settings.GEOCODER_PROVIDER,
            api_key=settings.GOOGLE_MAPS_API_KEY,
            base_url=settings.GOOGLE_MAPS_BASE_URL,
            timeout=settings.GEOCODER_TIMEOUT_SECONDS,
            cache=cache,
        )

    if notifier is None:
        if settings.NOTIFIER_WEBHOOK_URL:
            notifier = WebhookNotifier(
                settings.NOTIFIER_WEBHOOK_URL, timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
            )
        else:
            notifier = LoggingNotifier()

    if executor is None and background:
        executor = ThreadPoolExecutor(
            max_workers=settings.NOTIFIER_MAX_WORKERS,
            thread_name_prefix="notify-io",
        )
    if enrichment_executor is None and background:
        enrichment_executor = ThreadPoolExecutor(
            max_workers=settings.ENRICHMENT_MAX_WORKERS,
            thread_name_prefix="enrichment-io",
        )

    locks = KeyedLock()
    matcher = ResponderMatcher(
        max_candidates=settings.MATCH_MAX_CANDIDATES,
        max_distance_m=settings.MATCH_MAX_DISTANCE_METERS,
    )
    dispatcher = NotificationDispatcher(notifier, executor)
    geofence = GeofenceEvaluator(store, policy=settings.GEOFENCE_MATCH_POLICY)
    enricher = LocationEnricher(
        geocoder, BestEffortRunner(
            enrichment_executor, timeout=settings.ENRICHMENT_TIMEOUT_SECONDS,
        ),
    )

    services = Services(
        settings=settings,
        database=database,
        store=store,
        cache=cache,
        geocoder=geocoder,
        notifier=notifier,
        executor=executor,
        enrichment_executor=enrichment_executor,
        locks=locks,
        matcher=matcher,
        dispatcher=dispatcher,
        geofence=geofence,
        enricher=enricher,
        lifecycle=AlertLifecycleManager(
            store, matcher, dispatcher, geofence, enricher, settings, locks,
        ),
        tracker=LocationTracker(store, dispatcher, geofence, enricher, settings, locks),
        trusted_locations=TrustedLocationService(store, enricher, settings),
        responders=ResponderAvailabilityService(store, settings),
    )
    logger.info(
        "Services built (db=%s, geocoder=%s, notifier=%s)",
        database.display_url, geocoder.name, notifier.name,
    )
    return services
