"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1)
    • Cache connectivity (Redis PING, when configured)
    • Geocoder / notifier configuration

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = ""
    environment: str = ""
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def check_database(database) -> ComponentHealth:
    """Round-trip the database."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        database.ping()
        comp.message = "Connection available"
        comp.details = {"url": database.display_url}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_redis(cache) -> ComponentHealth:
    """Check the geocode cache; absence only degrades enrichment."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if cache is None:
        comp.message = "Not configured (geocode caching disabled)"
    elif cache.ping():
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Cache unreachable"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_integrations(geocoder, notifier) -> ComponentHealth:
    """Report which providers are wired in."""
    comp = ComponentHealth(name="integrations")
    comp.details = {"geocoder": geocoder.name, "notifier": notifier.name}
    if geocoder.name == "none":
        comp.status = HealthStatus.DEGRADED
        comp.message = "No geocoder configured; addresses and maps unavailable"
    else:
        comp.message = "Providers configured"
    return comp


def run_health_check(services, *, version: str = "", environment: str = "") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        version=version,
        environment=environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(check_database(services.database))
    report.components.append(check_redis(services.cache))
    report.components.append(check_integrations(services.geocoder, services.notifier))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
