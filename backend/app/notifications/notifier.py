"""
notifier.py — Emergency notification fan-out.

EmergencyNotifier turns one newly reported emergency into two pushes:

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  EmergencyReport    │  validated id / category / coordinates
    └─────────┬───────────┘
              │
      ┌───────┴──────────────────────────┐
      ▼                                  ▼
    ┌─────────────────────┐   ┌─────────────────────────┐
    │ 1. Topic broadcast  │   │ 2. Directory full scan  │
    │    topic=<category> │   │    citizens in ring     │
    │                     │   │    0.05 < d <= 5.0 km   │
    └─────────┬───────────┘   └───────────┬─────────────┘
              │                           ▼
              │               ┌─────────────────────────┐
              │               │ 3. Multicast to unique  │
              │               │    tokens (skip if none)│
              │               └───────────┬─────────────┘
              └─────────────┬─────────────┘
                            ▼
                  ┌───────────────────┐
                  │  DeliveryResult   │
                  └───────────────────┘

Failure policy:
    • Dispatch errors (either branch) are caught, logged and recorded in
      the branch outcome. They never fail the invocation.
    • A directory read failure raises DirectoryUnavailableError (internal).
    • Malformed input is rejected before any dispatch (invalid-argument).

Nothing is retried and nothing is persisted. The two branches are
independent; with ``concurrent_branches=True`` the topic broadcast runs on
a worker thread while the scan runs on the caller's thread.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping, Optional, Sequence, Union

from backend.app.core.config import Settings
from backend.app.core.errors import DirectoryUnavailableError, NotificationServiceError
from backend.app.notifications.channels import PushSender
from backend.app.notifications.directory import UserDirectory
from backend.app.notifications.geo_fence import NearbyScan, collect_nearby_tokens
from backend.app.notifications.models import (
    ELLIPSIS,
    EMPTY_DESCRIPTION_PLACEHOLDER,
    DeliveryResult,
    DispatchOutcome,
    DispatchStatus,
    EmergencyReport,
    NotificationPayload,
    NotifierConfig,
    TruncationPolicy,
)

logger = logging.getLogger(__name__)

CANCELLED = "cancelled before send"


# ═══════════════════════════════════════════════════════════════════════════
# Payload Builders
# ═══════════════════════════════════════════════════════════════════════════

def truncate_description(
    description: Optional[str],
    max_len: int = 100,
    policy: TruncationPolicy = TruncationPolicy.WHEN_TRUNCATED,
) -> str:
    """
    Render the notification body from a report description.

    Empty descriptions become the placeholder text. The text is cut to
    ``max_len`` characters; the ellipsis is appended according to
    ``policy``.

    >>> truncate_description("Building fire reported")
    'Building fire reported'
    >>> truncate_description("x" * 120)[-5:]
    'xx...'
    >>> truncate_description("short", policy=TruncationPolicy.ALWAYS)
    'short...'
    """
    text = description if description else EMPTY_DESCRIPTION_PLACEHOLDER
    cut = text[:max_len]
    if policy == TruncationPolicy.ALWAYS or len(text) > max_len:
        return cut + ELLIPSIS
    return cut


def _payload_data(report: EmergencyReport) -> dict:
    # FCM data values must be strings
    return {
        "emergencyId": str(report.emergency_id),
        "type": report.category.value,
    }


def build_topic_payload(report: EmergencyReport, config: NotifierConfig) -> NotificationPayload:
    """Payload for responders subscribed to the category topic."""
    return NotificationPayload(
        title=f"New {report.category.value} Emergency",
        body=truncate_description(
            report.description,
            config.description_truncate_len,
            config.truncation_policy,
        ),
        data=_payload_data(report),
    )


def build_nearby_payload(report: EmergencyReport, config: NotifierConfig) -> NotificationPayload:
    """Payload for citizens near the emergency. Same body and data, distinct title."""
    return NotificationPayload(
        title=f"Emergency Nearby ({report.category.value})",
        body=truncate_description(
            report.description,
            config.description_truncate_len,
            config.truncation_policy,
        ),
        data=_payload_data(report),
    )


def _log_token_failures(outcome: DispatchOutcome, emergency_id: str) -> None:
    for failure in outcome.failures:
        logger.warning(
            "Failed token %s: %s", failure.token, failure.error,
            extra={"emergency_id": emergency_id, "channel": "multicast"},
        )


def _cancelled(
    cancel: Optional[threading.Event], report: EmergencyReport, channel: str,
) -> bool:
    if cancel is None or not cancel.is_set():
        return False
    logger.warning(
        "Fan-out for %s cancelled; %s send skipped", report.emergency_id, channel,
        extra={"emergency_id": report.emergency_id, "channel": channel},
    )
    return True


# ═══════════════════════════════════════════════════════════════════════════
# Notifier
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyNotifier:
    """
    Fan out push notifications for one emergency per ``notify`` call.

    Parameters
    ----------
    directory : UserDirectory
        Source of user records for nearby targeting.
    sender : PushSender
        Push transport for topic and multicast sends.
    config : NotifierConfig | None
        Ring bounds and truncation settings (defaults: 0.05 / 5.0 km, 100 chars).
    concurrent_branches : bool
        Run the topic broadcast concurrently with the directory scan.

    Examples
    --------
    >>> from backend.app.notifications.directory import InMemoryUserDirectory
    >>> from backend.app.notifications.channels.simulated import SimulatedPushSender
    >>> notifier = EmergencyNotifier(InMemoryUserDirectory(), SimulatedPushSender())
    >>> result = notifier.notify({"emergencyId": "E1", "type": "fire",
    ...                           "latitude": 10.0, "longitude": 10.0})
    >>> result.notified_nearby_users
    0
    """

    def __init__(
        self,
        directory: UserDirectory,
        sender: PushSender,
        config: Optional[NotifierConfig] = None,
        *,
        concurrent_branches: bool = False,
    ):
        self.directory = directory
        self.sender = sender
        self.config = config or NotifierConfig()
        self.concurrent_branches = concurrent_branches

    # ── Branch 1: topic ──

    def _broadcast_topic(
        self, report: EmergencyReport, cancel: Optional[threading.Event] = None,
    ) -> DispatchOutcome:
        topic = report.category.value
        if _cancelled(cancel, report, "topic"):
            return DispatchOutcome(
                branch="topic", status=DispatchStatus.SKIPPED, error_message=CANCELLED,
            )
        payload = build_topic_payload(report, self.config)
        try:
            outcome = self.sender.send_to_topic(payload, topic)
        except Exception as exc:
            logger.warning(
                "Failed to send topic notification to '%s': %s", topic, exc,
                extra={"emergency_id": report.emergency_id, "channel": "topic"},
            )
            return DispatchOutcome(
                branch="topic",
                status=DispatchStatus.FAILED,
                target_count=1,
                failure_count=1,
                error_message=str(exc),
            )

        logger.info(
            "Notification sent to topic: %s", topic,
            extra={"emergency_id": report.emergency_id, "channel": "topic"},
        )
        return outcome

    # ── Branch 2: directory scan + multicast ──

    def _scan_directory(self, report: EmergencyReport) -> NearbyScan:
        try:
            entries = self.directory.fetch_all()
            return collect_nearby_tokens(report, entries, self.config)
        except NotificationServiceError:
            raise
        except Exception as exc:
            raise DirectoryUnavailableError(str(exc)) from exc

    def _multicast_nearby(
        self,
        report: EmergencyReport,
        tokens: Sequence[str],
        cancel: Optional[threading.Event] = None,
    ) -> DispatchOutcome:
        if not tokens:
            logger.info(
                "No nearby users to notify; multicast skipped",
                extra={"emergency_id": report.emergency_id, "recipient_count": 0},
            )
            return DispatchOutcome(branch="nearby", status=DispatchStatus.SKIPPED)
        if _cancelled(cancel, report, "multicast"):
            return DispatchOutcome(
                branch="nearby",
                status=DispatchStatus.SKIPPED,
                target_count=len(tokens),
                error_message=CANCELLED,
            )

        payload = build_nearby_payload(report, self.config)
        try:
            outcome = self.sender.send_multicast(payload, list(tokens))
        except Exception as exc:
            logger.error(
                "Multicast notification failed: %s", exc,
                extra={"emergency_id": report.emergency_id, "channel": "multicast"},
            )
            return DispatchOutcome(
                branch="nearby",
                status=DispatchStatus.FAILED,
                target_count=len(tokens),
                failure_count=len(tokens),
                error_message=str(exc),
            )

        logger.info(
            "Notification sent to %d/%d nearby users",
            outcome.success_count, len(tokens),
            extra={"emergency_id": report.emergency_id, "recipient_count": len(tokens)},
        )
        if outcome.failure_count > 0:
            logger.warning(
                "Failed to send to %d users", outcome.failure_count,
                extra={"emergency_id": report.emergency_id},
            )
            _log_token_failures(outcome, report.emergency_id)
        return outcome

    def _nearby_branch(
        self, report: EmergencyReport, cancel: Optional[threading.Event] = None,
    ) -> tuple[NearbyScan, DispatchOutcome]:
        scan = self._scan_directory(report)
        return scan, self._multicast_nearby(report, scan.tokens, cancel)

    # ── Entry point ──

    def notify(
        self,
        report: Union[EmergencyReport, Mapping[str, Any]],
        cancel: Optional[threading.Event] = None,
    ) -> DeliveryResult:
        """
        Fan out notifications for one emergency.

        Parameters
        ----------
        report : EmergencyReport | Mapping
            A validated report, or a raw mapping validated here.
        cancel : threading.Event | None
            Once set, sends that have not started yet are skipped. A send
            already in flight is not interrupted.

        Returns
        -------
        DeliveryResult
            Both branches' outcomes and the unique nearby recipient count.

        Raises
        ------
        InvalidArgumentError
            Missing or malformed id / category / coordinates.
        DirectoryUnavailableError
            The user directory could not be read.
        """
        if not isinstance(report, EmergencyReport):
            report = EmergencyReport.from_mapping(report)

        started = time.perf_counter()
        logger.info(
            "Fan-out for emergency %s [%s] at (%.5f, %.5f)",
            report.emergency_id, report.category.value,
            report.latitude, report.longitude,
            extra={"emergency_id": report.emergency_id, "category": report.category.value},
        )

        if self.concurrent_branches:
            with ThreadPoolExecutor(max_workers=1, thread_name_prefix="topic") as pool:
                topic_future = pool.submit(self._broadcast_topic, report, cancel)
                try:
                    scan, nearby = self._nearby_branch(report, cancel)
                finally:
                    # join the topic branch even when the scan fails
                    topic = topic_future.result()
        else:
            topic = self._broadcast_topic(report, cancel)
            scan, nearby = self._nearby_branch(report, cancel)

        result = DeliveryResult(
            emergency_id=report.emergency_id,
            category=report.category,
            topic=topic,
            nearby=nearby,
            notified_nearby_users=scan.count,
            users_scanned=scan.scanned,
        )

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Fan-out for %s complete: status=%s topic=%s nearby=%s (%d users) %.1fms",
            report.emergency_id, result.status,
            topic.status.value, nearby.status.value,
            scan.count, duration_ms,
            extra={
                "emergency_id": report.emergency_id,
                "recipient_count": scan.count,
                "duration_ms": duration_ms,
            },
        )
        return result


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_notifier(settings: Settings) -> EmergencyNotifier:
    """
    Wire an EmergencyNotifier from settings.

    PUSH_PROVIDER=firebase uses Firestore + FCM on an explicitly created
    Firebase app; ``simulation`` uses an empty in-memory directory and the
    logging sender.
    """
    config = NotifierConfig.from_settings(settings)
    provider = settings.PUSH_PROVIDER.lower()

    if provider == "firebase":
        from backend.app.core.firebase import get_firebase_app
        from backend.app.notifications.channels.fcm import FirebasePushSender
        from backend.app.notifications.directory import FirestoreUserDirectory

        app = get_firebase_app(settings)
        directory: UserDirectory = FirestoreUserDirectory(app, settings.USERS_COLLECTION)
        sender: PushSender = FirebasePushSender(
            app, batch_size=settings.FCM_MULTICAST_BATCH_SIZE,
        )
    elif provider == "simulation":
        from backend.app.notifications.channels.simulated import SimulatedPushSender
        from backend.app.notifications.directory import InMemoryUserDirectory

        directory = InMemoryUserDirectory()
        sender = SimulatedPushSender()
    else:
        raise ValueError(
            f"Unknown PUSH_PROVIDER '{settings.PUSH_PROVIDER}' "
            "(expected 'firebase' or 'simulation')"
        )

    logger.info(
        "Notifier wired: provider=%s ring=(%.2f, %.2f] km truncate=%d/%s",
        provider, config.min_radius_km, config.max_radius_km,
        config.description_truncate_len, config.truncation_policy.value,
    )
    return EmergencyNotifier(
        directory, sender, config,
        concurrent_branches=settings.NOTIFY_CONCURRENT_BRANCHES,
    )
