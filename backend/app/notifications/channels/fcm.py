"""
fcm.py — Firebase Cloud Messaging push channel.

Delivery mechanism:
    • Topic broadcast via ``messaging.send`` with ``topic=<category>``
    • Nearby devices via ``messaging.send_each_for_multicast``

FCM accepts at most 500 tokens per multicast message, so larger token
lists are split into batches and the per-token responses folded back into
one DispatchOutcome. A batch that raises marks all of its tokens failed;
only when every batch raises does the whole call raise.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from firebase_admin import messaging

from backend.app.core.errors import PushDeliveryError
from backend.app.notifications.models import (
    DispatchOutcome,
    DispatchStatus,
    NotificationPayload,
    TokenFailure,
)

logger = logging.getLogger(__name__)

MAX_MULTICAST_TOKENS = 500


def _notification(payload: NotificationPayload) -> messaging.Notification:
    return messaging.Notification(title=payload.title, body=payload.body)


def _chunks(tokens: Sequence[str], size: int) -> List[List[str]]:
    return [list(tokens[i:i + size]) for i in range(0, len(tokens), size)]


class FirebasePushSender:
    """
    PushSender backed by the Firebase Admin SDK.

    Parameters
    ----------
    app : firebase_admin.App | None
        Explicit app handle; None uses the SDK default app.
    batch_size : int
        Tokens per multicast call, capped at 500.
    dry_run : bool
        Validate messages with FCM without delivering them.
    """

    def __init__(
        self,
        app: Optional[Any] = None,
        *,
        batch_size: int = MAX_MULTICAST_TOKENS,
        dry_run: bool = False,
    ):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._app = app
        self.batch_size = min(batch_size, MAX_MULTICAST_TOKENS)
        self.dry_run = dry_run

    def send_to_topic(self, payload: NotificationPayload, topic: str) -> DispatchOutcome:
        message = messaging.Message(
            notification=_notification(payload),
            data=dict(payload.data),
            topic=topic,
        )
        try:
            message_id = messaging.send(message, dry_run=self.dry_run, app=self._app)
        except Exception as exc:
            raise PushDeliveryError("fcm-topic", str(exc)) from exc

        logger.info(
            "[FCM] Topic '%s' accepted (message_id=%s)", topic, message_id,
            extra={"channel": "fcm-topic"},
        )
        return DispatchOutcome(
            branch="topic",
            status=DispatchStatus.SENT,
            target_count=1,
            success_count=1,
        )

    def send_multicast(
        self, payload: NotificationPayload, tokens: Sequence[str],
    ) -> DispatchOutcome:
        outcome = DispatchOutcome(
            branch="nearby",
            status=DispatchStatus.SENT,
            target_count=len(tokens),
        )
        if not tokens:
            outcome.status = DispatchStatus.SKIPPED
            return outcome

        batches = _chunks(tokens, self.batch_size)
        errors: List[str] = []

        for batch in batches:
            multicast = messaging.MulticastMessage(
                tokens=batch,
                notification=_notification(payload),
                data=dict(payload.data),
            )
            try:
                response = messaging.send_each_for_multicast(
                    multicast, dry_run=self.dry_run, app=self._app,
                )
            except Exception as exc:
                logger.error(
                    "[FCM] Multicast batch of %d failed: %s", len(batch), exc,
                    extra={"channel": "fcm-multicast"},
                )
                errors.append(str(exc))
                outcome.failure_count += len(batch)
                outcome.failures.extend(TokenFailure(t, str(exc)) for t in batch)
                continue

            outcome.success_count += response.success_count
            outcome.failure_count += response.failure_count
            for token, resp in zip(batch, response.responses):
                if not resp.success:
                    message = (
                        str(resp.exception) if resp.exception else "Unknown error"
                    )
                    outcome.failures.append(TokenFailure(token, message))

        if len(errors) == len(batches):
            raise PushDeliveryError("fcm-multicast", "; ".join(errors))

        if outcome.failure_count == 0:
            outcome.status = DispatchStatus.SENT
        elif outcome.success_count == 0:
            outcome.status = DispatchStatus.FAILED
        else:
            outcome.status = DispatchStatus.PARTIAL
        if errors:
            outcome.error_message = "; ".join(errors)

        logger.info(
            "[FCM] Multicast delivered to %d/%d devices in %d batch(es)",
            outcome.success_count, len(tokens), len(batches),
            extra={"channel": "fcm-multicast", "recipient_count": len(tokens)},
        )
        return outcome
