"""
simulated.py — Logging-only push channel for development.

Selected with PUSH_PROVIDER=simulation. Every send is logged and
reported as delivered; nothing leaves the process. The sender keeps the
most recent sends (``history`` of each kind) so local runs can be
inspected without the record growing for the life of the server.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Sequence, Tuple

from backend.app.notifications.models import (
    DispatchOutcome,
    DispatchStatus,
    NotificationPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 100


class SimulatedPushSender:
    """PushSender that logs instead of delivering."""

    def __init__(self, history: int = DEFAULT_HISTORY):
        if history < 0:
            raise ValueError(f"history must be >= 0, got {history}")
        self.topic_sends: Deque[Tuple[str, NotificationPayload]] = deque(maxlen=history)
        self.multicast_sends: Deque[Tuple[List[str], NotificationPayload]] = deque(
            maxlen=history,
        )

    def send_to_topic(self, payload: NotificationPayload, topic: str) -> DispatchOutcome:
        self.topic_sends.append((topic, payload))
        logger.info(
            "[SIMULATED] Topic '%s': %s - %s", topic, payload.title, payload.body,
            extra={"channel": "simulated-topic"},
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
        self.multicast_sends.append((list(tokens), payload))
        logger.info(
            "[SIMULATED] Multicast to %d device(s): %s",
            len(tokens), payload.title,
            extra={"channel": "simulated-multicast", "recipient_count": len(tokens)},
        )
        return DispatchOutcome(
            branch="nearby",
            status=DispatchStatus.SENT if tokens else DispatchStatus.SKIPPED,
            target_count=len(tokens),
            success_count=len(tokens),
        )
