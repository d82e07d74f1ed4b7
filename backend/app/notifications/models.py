"""
models.py — Shared data structures for the emergency notification fan-out.

Defines:
    • EmergencyCategory — enumerated emergency types (also the topic names)
    • UserRole          — directory roles; only citizens are targeted nearby
    • TruncationPolicy  — when the ellipsis marker is appended to bodies
    • NotifierConfig    — radius ring + truncation settings
    • EmergencyReport   — the immutable input of one invocation
    • UserDirectoryEntry — read-only view of one user record
    • NotificationPayload — title/body/data sent to FCM
    • DispatchOutcome   — status of one dispatch branch (topic / multicast)
    • DeliveryResult    — aggregate result returned to the caller

═══════════════════════════════════════════════════════════════════════════
WIRE NAMES
═══════════════════════════════════════════════════════════════════════════

Reports arrive from the mobile app with camelCase keys and the category
under ``type``:

    {"emergencyId": "E1", "type": "fire",
     "latitude": 10.0, "longitude": 10.0, "description": "..."}

User documents in the directory look like:

    {"role": "citizen", "deviceToken": "…",
     "lastLocation": {"latitude": 10.03, "longitude": 10.0}}

Both shapes are parsed here so the rest of the package only sees
dataclasses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from backend.app.core.errors import InvalidArgumentError
from backend.app.spatial.radius_utils import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyCategory(str, Enum):
    """Emergency types. The value doubles as the FCM topic name."""
    FIRE             = "fire"
    MEDICAL          = "medical"
    POLICE           = "police"
    NATURAL_DISASTER = "natural_disaster"
    ACCIDENT         = "accident"
    SECURITY         = "security"
    OTHER            = "other"


class UserRole(str, Enum):
    CITIZEN   = "citizen"
    RESPONDER = "responder"
    ADMIN     = "admin"


class TruncationPolicy(str, Enum):
    """When to append the ellipsis marker to a notification body."""
    WHEN_TRUNCATED = "when_truncated"   # only if characters were cut
    ALWAYS         = "always"           # unconditionally

    @classmethod
    def parse(cls, value: Any) -> "TruncationPolicy":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class DispatchStatus(str, Enum):
    """Outcome of one dispatch branch."""
    SENT    = "sent"      # call succeeded for every target
    PARTIAL = "partial"   # call returned, some tokens rejected
    FAILED  = "failed"    # call raised, or every token rejected
    SKIPPED = "skipped"   # nothing to send (empty token set)


ELLIPSIS = "..."
EMPTY_DESCRIPTION_PLACEHOLDER = "No description provided"


# ═══════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotifierConfig:
    """Tunable constants of the fan-out."""
    min_radius_km: float = 0.05
    max_radius_km: float = 5.0
    description_truncate_len: int = 100
    truncation_policy: TruncationPolicy = TruncationPolicy.WHEN_TRUNCATED

    def __post_init__(self) -> None:
        if self.max_radius_km <= 0:
            raise ValueError(f"max_radius_km must be positive, got {self.max_radius_km}")
        if not (0 <= self.min_radius_km < self.max_radius_km):
            raise ValueError(
                f"min_radius_km must be in [0, {self.max_radius_km}), "
                f"got {self.min_radius_km}"
            )
        if self.description_truncate_len <= 0:
            raise ValueError(
                "description_truncate_len must be positive, "
                f"got {self.description_truncate_len}"
            )

    @classmethod
    def from_settings(cls, settings: Any) -> "NotifierConfig":
        return cls(
            min_radius_km=settings.NOTIFY_MIN_RADIUS_KM,
            max_radius_km=settings.NOTIFY_MAX_RADIUS_KM,
            description_truncate_len=settings.DESCRIPTION_TRUNCATE_LEN,
            truncation_policy=TruncationPolicy.parse(settings.TRUNCATION_POLICY),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minRadiusKm": self.min_radius_km,
            "maxRadiusKm": self.max_radius_km,
            "descriptionTruncateLen": self.description_truncate_len,
            "truncationPolicy": self.truncation_policy.value,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═══════════════════════════════════════════════════════════════════════════

def _is_number(value: Any) -> bool:
    # bool is an int subclass; a True latitude is a client bug, not 1.0
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EmergencyReport:
    """
    A newly reported emergency — the single input of one fan-out.

    Attributes
    ----------
    emergency_id : str
        Opaque identifier of the emergency document.
    category : EmergencyCategory
        Emergency type; also the FCM topic that responders subscribe to.
    latitude, longitude : float
        Incident location, WGS84 decimal degrees.
    description : str
        Free text from the reporter, may be empty.
    """
    emergency_id: str
    category: EmergencyCategory
    latitude: float
    longitude: float
    description: str = ""

    @property
    def location(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EmergencyReport":
        """
        Validate a raw report (camelCase wire names or snake_case).

        Raises
        ------
        InvalidArgumentError
            If id, category or coordinates are missing or malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidArgumentError(
                "Emergency data must be an object",
                received=type(data).__name__,
            )

        emergency_id = _first_present(data, "emergencyId", "emergency_id", "id")
        if emergency_id is None or str(emergency_id).strip() == "":
            raise InvalidArgumentError(
                "Missing required emergency data", field="emergencyId",
            )

        raw_category = _first_present(data, "type", "category")
        if raw_category is None or str(raw_category).strip() == "":
            raise InvalidArgumentError(
                "Missing required emergency data", field="type",
            )
        try:
            category = EmergencyCategory(str(raw_category).strip().lower())
        except ValueError:
            raise InvalidArgumentError(
                f"Unknown emergency type '{raw_category}'",
                field="type",
                allowed=[c.value for c in EmergencyCategory],
            ) from None

        latitude = data.get("latitude")
        longitude = data.get("longitude")
        for name, value in (("latitude", latitude), ("longitude", longitude)):
            if value is None:
                raise InvalidArgumentError(
                    "Missing required emergency data", field=name,
                )
            if not _is_number(value):
                raise InvalidArgumentError(
                    f"{name} must be a number", field=name,
                )
        if not -90.0 <= latitude <= 90.0:
            raise InvalidArgumentError(
                f"Latitude must be in [-90, 90], got {latitude}", field="latitude",
            )
        if not -180.0 <= longitude <= 180.0:
            raise InvalidArgumentError(
                f"Longitude must be in [-180, 180], got {longitude}",
                field="longitude",
            )

        description = data.get("description") or ""
        if not isinstance(description, str):
            description = str(description)

        return cls(
            emergency_id=str(emergency_id),
            category=category,
            latitude=float(latitude),
            longitude=float(longitude),
            description=description,
        )


@dataclass(frozen=True)
class UserDirectoryEntry:
    """
    Read-only view of one user record.

    A missing location or device token makes the user ineligible for
    nearby pushes; it is never an error.
    """
    user_id: str
    role: Optional[UserRole] = None
    location: Optional[Coordinate] = None
    device_token: Optional[str] = None

    @property
    def is_citizen(self) -> bool:
        return self.role == UserRole.CITIZEN

    @classmethod
    def from_document(cls, user_id: str, doc: Mapping[str, Any]) -> "UserDirectoryEntry":
        """Build an entry from a raw ``users`` document."""
        try:
            role: Optional[UserRole] = UserRole(doc.get("role"))
        except ValueError:
            role = None

        location: Optional[Coordinate] = None
        last = doc.get("lastLocation")
        if isinstance(last, Mapping):
            lat, lon = last.get("latitude"), last.get("longitude")
            if _is_number(lat) and _is_number(lon):
                try:
                    location = Coordinate(float(lat), float(lon))
                except ValueError:
                    location = None

        token = doc.get("deviceToken")
        if not isinstance(token, str) or not token:
            token = None

        return cls(user_id=user_id, role=role, location=location, device_token=token)


@dataclass(frozen=True)
class NotificationPayload:
    """The message pushed to a topic or a set of devices."""
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification": {"title": self.title, "body": self.body},
            "data": dict(self.data),
        }


@dataclass
class TokenFailure:
    """One device token rejected by the push transport."""
    token: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        # tokens are credentials-ish; only a prefix leaves the process
        return {"token": self.token[:12] + "...", "error": self.error}


@dataclass
class DispatchOutcome:
    """Result of one dispatch branch (topic send or multicast send)."""
    branch: str
    status: DispatchStatus
    target_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    error_message: Optional[str] = None
    failures: List[TokenFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True unless the branch failed outright."""
        return self.status != DispatchStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "branch": self.branch,
            "status": self.status.value,
            "targetCount": self.target_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }
        if self.error_message:
            d["error"] = self.error_message
        if self.failures:
            d["failures"] = [f.to_dict() for f in self.failures]
        return d


@dataclass
class DeliveryResult:
    """Aggregate outcome of one fan-out invocation."""
    emergency_id: str
    category: EmergencyCategory
    topic: DispatchOutcome
    nearby: DispatchOutcome
    notified_nearby_users: int = 0
    users_scanned: int = 0
    completed_at: datetime = field(default_factory=_now)

    @property
    def status(self) -> str:
        """success / partial / failed across both branches."""
        outcomes = (self.topic.status, self.nearby.status)
        if all(s in (DispatchStatus.SENT, DispatchStatus.SKIPPED) for s in outcomes):
            return "success"
        if all(s == DispatchStatus.FAILED for s in outcomes):
            return "failed"
        if (self.topic.status == DispatchStatus.FAILED
                and self.nearby.status == DispatchStatus.SKIPPED):
            return "failed"
        return "partial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            # the report itself always succeeds; see "status" for delivery
            "success": True,
            "emergencyId": self.emergency_id,
            "type": self.category.value,
            "status": self.status,
            "notifiedNearbyUsers": self.notified_nearby_users,
            "usersScanned": self.users_scanned,
            "topic": self.topic.to_dict(),
            "nearby": self.nearby.to_dict(),
            "timestamp": self.completed_at.isoformat(),
        }
