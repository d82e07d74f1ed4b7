"""
FastAPI route: emergency notification fan-out trigger.

Provides endpoints to:
    POST /api/v1/emergencies/notify   — fan out pushes for a new emergency
    GET  /api/v1/emergencies/config   — active ring / truncation settings
    GET  /api/v1/emergencies/health   — notifier wiring health

The trigger accepts either a single report object or a list whose first
element is the report (the reporting client wraps it in an array).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import lru_cache
from typing import List, Union

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from backend.app.api.schemas import EmergencyReportIn, NotifierConfigOut, NotifyResponse
from backend.app.core.config import settings
from backend.app.core.errors import InvalidArgumentError, NotificationTimeoutError
from backend.app.notifications.models import EmergencyReport
from backend.app.notifications.notifier import EmergencyNotifier, build_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/emergencies", tags=["emergency-notifications"])


@lru_cache()
def get_notifier() -> EmergencyNotifier:
    """Notifier built once from settings; override in tests."""
    return build_notifier(settings)


def _unwrap(body: Union[EmergencyReportIn, List[EmergencyReportIn]]) -> EmergencyReportIn:
    if isinstance(body, list):
        if not body:
            raise InvalidArgumentError("Missing required emergency data")
        return body[0]
    return body


@router.post(
    "/notify",
    response_model=NotifyResponse,
    summary="Notify responders and nearby citizens of a new emergency",
    description=(
        "Broadcasts to the category topic and multicasts to citizens within "
        "the configured radius. Push failures are reported in the result; "
        "only malformed input or an unreadable user directory fail the call."
    ),
)
async def notify_emergency(
    body: Union[List[EmergencyReportIn], EmergencyReportIn],
    notifier: EmergencyNotifier = Depends(get_notifier),
):
    """Fan out notifications for one emergency report."""
    report = EmergencyReport.from_mapping(_unwrap(body).to_mapping())
    timeout = settings.NOTIFY_TIMEOUT_SECONDS
    cancel = threading.Event()

    # wait_for cannot stop the worker thread. On timeout the fan-out keeps its
    # threadpool slot until the blocked call returns; the cancel event only
    # stops sends that have not started yet.
    try:
        result = await asyncio.wait_for(
            run_in_threadpool(notifier.notify, report, cancel), timeout=timeout,
        )
    except asyncio.TimeoutError:
        cancel.set()
        logger.error(
            "Fan-out for %s exceeded %.0fs", report.emergency_id, timeout,
            extra={"emergency_id": report.emergency_id},
        )
        raise NotificationTimeoutError(timeout, report.emergency_id)

    return result.to_dict()


@router.get(
    "/config",
    response_model=NotifierConfigOut,
    summary="Active targeting configuration",
)
async def notifier_config(notifier: EmergencyNotifier = Depends(get_notifier)):
    return notifier.config.to_dict()


@router.get("/health", summary="Notifier health check")
async def health(notifier: EmergencyNotifier = Depends(get_notifier)):
    """Report which directory and sender the notifier is wired to."""
    return {
        "status": "healthy",
        "service": "emergency-notifications",
        "provider": settings.PUSH_PROVIDER,
        "directory": type(notifier.directory).__name__,
        "sender": type(notifier.sender).__name__,
        "concurrent_branches": notifier.concurrent_branches,
    }
