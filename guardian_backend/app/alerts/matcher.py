"""
matcher.py — Pick and claim responders for an alert.

═══════════════════════════════════════════════════════════════════════════
MATCHING PIPELINE
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Candidates: status = available ∧ is_active ∧ has a location,
             within max_distance_m of the alert (bbox SQL + Haversine)
    Step 2 — Rank: most recent heartbeat (last_ping) first; equal pings
             go to the nearer responder
    Step 3 — Truncate to max_candidates
    Step 4 — Claim each survivor with a conditional update
             ("busy only if still available"); a failed claim means a
             concurrent alert got there first and the candidate is dropped

Everything runs inside the caller's unit of work; the claims commit or
roll back together with the alert itself.

No candidates is a normal outcome and yields an empty list.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from guardian_backend.app.alerts.models import Assignment, ResponderAvailability
from guardian_backend.app.spatial.geo_index import GeoHit
from guardian_backend.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)


def rank_candidates(
    hits: Sequence[GeoHit[ResponderAvailability]],
    max_candidates: int,
) -> List[GeoHit[ResponderAvailability]]:
    """Order by ``last_ping`` descending (ties: nearer first) and truncate."""
    if max_candidates <= 0:
        return []
    ordered = sorted(
        hits,
        key=lambda h: (-h.item.last_ping.timestamp(), h.distance_km),
    )
    return ordered[:max_candidates]


class ResponderMatcher:
    """
    Parameters
    ----------
    max_candidates : int
        Upper bound on responders claimed per call.
    max_distance_m : float
        Search radius around the alert, in metres.
    """

    def __init__(self, max_candidates: int = 5, max_distance_m: float = 10_000.0):
        self.max_candidates = max_candidates
        self.max_distance_m = max_distance_m

    def assign_with_distances(
        self,
        uow,
        alert_id: str,
        alert_location: Coordinate,
        *,
        max_candidates: Optional[int] = None,
        max_distance_m: Optional[float] = None,
        exclude: Iterable[str] = (),
    ) -> List[Tuple[Assignment, float]]:
        """Like ``assign`` but also returns each claimed responder's distance (km)."""
        limit = self.max_candidates if max_candidates is None else max_candidates
        radius = self.max_distance_m if max_distance_m is None else max_distance_m

        hits = uow.find_available_responders_near(alert_location, radius, exclude=exclude)
        ranked = rank_candidates(hits, limit)

        claimed: List[Tuple[Assignment, float]] = []
        now = datetime.now(timezone.utc)
        for hit in ranked:
            rid = hit.item.responder_id
            if uow.claim_responder(rid, alert_id):
                claimed.append((Assignment(responder_id=rid, assigned_at=now), hit.distance_km))
            else:
                logger.info(
                    "Responder %s no longer available for %s, skipped",
                    rid, alert_id,
                    extra={"alert_id": alert_id, "responder_id": rid},
                )

        logger.info(
            "Matched %d/%d candidates for %s (within %.0f m)",
            len(claimed), len(hits), alert_id, radius,
            extra={"alert_id": alert_id, "assigned_count": len(claimed)},
        )
        return claimed

    def assign(
        self,
        uow,
        alert_id: str,
        alert_location: Coordinate,
        max_candidates: Optional[int] = None,
        max_distance_m: Optional[float] = None,
    ) -> List[Assignment]:
        """Select, rank and claim responders; returns the claimed assignments."""
        return [
            a for a, _ in self.assign_with_distances(
                uow, alert_id, alert_location,
                max_candidates=max_candidates, max_distance_m=max_distance_m,
            )
        ]
