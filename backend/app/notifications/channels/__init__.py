"""
channels — Push delivery backends.

Each backend implements the PushSender capability:

    send_to_topic(payload, topic)   → DispatchOutcome
    send_multicast(payload, tokens) → DispatchOutcome

Backends may raise on transport failure; the notifier catches per branch.
Nothing here retries.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from backend.app.notifications.models import DispatchOutcome, NotificationPayload


@runtime_checkable
class PushSender(Protocol):
    """Capability: deliver a payload to a topic or an explicit token list."""

    def send_to_topic(self, payload: NotificationPayload, topic: str) -> DispatchOutcome:
        ...

    def send_multicast(
        self, payload: NotificationPayload, tokens: Sequence[str],
    ) -> DispatchOutcome:
        ...
