"""
Health check aggregation — probes for the notifier's collaborators.

Checks:
    • Push transport configuration (simulation / firebase credentials)
    • Targeting configuration sanity (ring bounds, truncation length)

Returns a structured health report suitable for liveness/readiness
probes and load balancer health checks.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from backend.app.core.config import settings

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
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
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


_start_time = time.monotonic()


async def check_push_transport() -> ComponentHealth:
    """Check the push provider is known and, for firebase, has credentials."""
    comp = ComponentHealth(name="push_transport")
    start = time.monotonic()
    provider = settings.PUSH_PROVIDER.lower()
    comp.details = {"provider": provider}

    if provider == "simulation":
        comp.status = HealthStatus.DEGRADED if settings.is_production else HealthStatus.HEALTHY
        comp.message = "Simulated delivery (no pushes leave the process)"
    elif provider == "firebase":
        path = settings.FIREBASE_CREDENTIALS_PATH
        if path and not Path(path).exists():
            comp.status = HealthStatus.UNHEALTHY
            comp.message = f"Credentials file not found: {path}"
        else:
            comp.status = HealthStatus.HEALTHY
            comp.message = (
                "Service account configured" if path
                else "Using application default credentials"
            )
        comp.details["users_collection"] = settings.USERS_COLLECTION
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"Unknown push provider '{settings.PUSH_PROVIDER}'"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_targeting_config() -> ComponentHealth:
    """Check ring bounds and truncation length are usable."""
    comp = ComponentHealth(name="targeting_config")
    start = time.monotonic()
    lo, hi = settings.NOTIFY_MIN_RADIUS_KM, settings.NOTIFY_MAX_RADIUS_KM
    comp.details = {
        "min_radius_km": lo,
        "max_radius_km": hi,
        "description_truncate_len": settings.DESCRIPTION_TRUNCATE_LEN,
    }
    if not (0 <= lo < hi) or settings.DESCRIPTION_TRUNCATE_LEN <= 0:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Invalid targeting configuration"
    else:
        comp.message = f"Ring ({lo}, {hi}] km"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check() -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for coro in (check_push_transport(), check_targeting_config()):
        report.components.append(await coro)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check: %s", report.status.value)
    return report
