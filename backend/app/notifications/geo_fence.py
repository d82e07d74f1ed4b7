"""
geo_fence.py — Nearby-citizen targeting for emergency fan-out.

Determines which device tokens sit inside the ring around an emergency.

═══════════════════════════════════════════════════════════════════════════
ELIGIBILITY
═══════════════════════════════════════════════════════════════════════════

A directory entry contributes its device token iff:

    1. role == citizen
    2. it has a last known location AND a device token
    3. min_radius_km < haversine(emergency, user) <= max_radius_km

The inner floor (50 m by default) keeps the reporter's own phone out of
the nearby broadcast. Tokens are collected into an insertion-ordered set:
two users sharing one device, or a duplicated directory record, still
produce a single push.

The directory is scanned in full. There is no bounding-box pre-filter;
swapping in an indexed radius query belongs to the UserDirectory
implementation, not here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from backend.app.notifications.models import (
    EmergencyReport,
    NotifierConfig,
    UserDirectoryEntry,
)
from backend.app.spatial.radius_utils import format_distance, haversine, within_ring

logger = logging.getLogger(__name__)


@dataclass
class NearbyScan:
    """Output of one directory scan."""
    tokens: List[str] = field(default_factory=list)
    scanned: int = 0
    skipped_role: int = 0
    skipped_incomplete: int = 0
    outside_ring: int = 0
    duplicate_tokens: int = 0

    @property
    def count(self) -> int:
        return len(self.tokens)


def collect_nearby_tokens(
    report: EmergencyReport,
    entries: Iterable[UserDirectoryEntry],
    config: NotifierConfig,
) -> NearbyScan:
    """
    Scan ``entries`` and return the deduplicated tokens of nearby citizens.

    Parameters
    ----------
    report : EmergencyReport
        The emergency (ring centre).
    entries : iterable of UserDirectoryEntry
        The full user directory. Consumed once.
    config : NotifierConfig
        Ring bounds.

    Returns
    -------
    NearbyScan
        Unique tokens in first-seen order plus scan counters.
    """
    origin = report.location
    seen: Dict[str, None] = {}
    scan = NearbyScan()

    for entry in entries:
        scan.scanned += 1

        if not entry.is_citizen:
            scan.skipped_role += 1
            continue
        if entry.location is None or not entry.device_token:
            scan.skipped_incomplete += 1
            continue

        distance = haversine(origin, entry.location)
        if not within_ring(distance, config.min_radius_km, config.max_radius_km):
            scan.outside_ring += 1
            continue

        if entry.device_token in seen:
            scan.duplicate_tokens += 1
            continue
        seen[entry.device_token] = None
        logger.debug(
            "User %s eligible at %s", entry.user_id, format_distance(distance),
        )

    scan.tokens = list(seen)

    logger.info(
        "Nearby scan: %d users checked, %d unique tokens "
        "(role=%d, incomplete=%d, outside=%d, duplicate=%d skipped, "
        "ring=(%.2f, %.2f] km)",
        scan.scanned, scan.count,
        scan.skipped_role, scan.skipped_incomplete,
        scan.outside_ring, scan.duplicate_tokens,
        config.min_radius_km, config.max_radius_km,
        extra={"emergency_id": report.emergency_id, "recipient_count": scan.count},
    )
    return scan
