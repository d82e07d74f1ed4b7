"""
test_notifier.py — EmergencyNotifier orchestration.

Covers:
    • Payload building (titles, truncation policies, data map)
    • Topic broadcast + nearby multicast happy path
    • Skip multicast when no one is nearby
    • Branch isolation (one dispatch failing never fails the other)
    • Unrecoverable errors (bad input, directory failure)
    • Concurrent branch mode
    • Cancellation of sends not yet started
    • build_notifier wiring

Run with:
    pytest tests/test_notifier.py -v
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

from backend.app.core.config import Settings
from backend.app.core.errors import (
    DirectoryUnavailableError,
    InvalidArgumentError,
    PushDeliveryError,
)
from backend.app.notifications.channels.simulated import SimulatedPushSender
from backend.app.notifications.directory import InMemoryUserDirectory
from backend.app.notifications.models import (
    DispatchOutcome,
    DispatchStatus,
    EmergencyCategory,
    EmergencyReport,
    NotifierConfig,
    TokenFailure,
    TruncationPolicy,
    UserDirectoryEntry,
    UserRole,
)
from backend.app.notifications.notifier import (
    EmergencyNotifier,
    build_nearby_payload,
    build_notifier,
    build_topic_payload,
    truncate_description,
)
from backend.app.spatial.radius_utils import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

FIRE_REPORT = {
    "emergencyId": "E1",
    "type": "fire",
    "latitude": 10.0,
    "longitude": 10.0,
    "description": "Building fire reported",
}


def _entry(uid, role, lat, lon, token):
    return UserDirectoryEntry(uid, role, Coordinate(lat, lon), token)


def _directory(*entries) -> InMemoryUserDirectory:
    return InMemoryUserDirectory(entries)


def _example_directory() -> InMemoryUserDirectory:
    return _directory(
        _entry("C1", UserRole.CITIZEN, 10.03, 10.0, "T1"),      # ~3.3 km
        _entry("R1", UserRole.RESPONDER, 10.01, 10.0, "T-R"),   # excluded by role
    )


def _failing_sender(topic_exc=None, multicast_exc=None) -> MagicMock:
    sender = MagicMock()
    if topic_exc:
        sender.send_to_topic.side_effect = topic_exc
    else:
        sender.send_to_topic.return_value = DispatchOutcome(
            "topic", DispatchStatus.SENT, target_count=1, success_count=1,
        )
    if multicast_exc:
        sender.send_multicast.side_effect = multicast_exc
    else:
        sender.send_multicast.side_effect = lambda payload, tokens: DispatchOutcome(
            "nearby", DispatchStatus.SENT,
            target_count=len(tokens), success_count=len(tokens),
        )
    return sender


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Payloads
# ═══════════════════════════════════════════════════════════════════════════

class TestTruncation:

    def test_short_text_untouched_when_truncated_policy(self):
        assert truncate_description("Building fire reported") == "Building fire reported"

    def test_exactly_limit_untouched(self):
        text = "x" * 100
        assert truncate_description(text) == text

    def test_long_text_cut_with_ellipsis(self):
        out = truncate_description("y" * 150)
        assert out == "y" * 100 + "..."
        assert len(out) == 103

    def test_always_policy_short_text(self):
        out = truncate_description("short", policy=TruncationPolicy.ALWAYS)
        assert out == "short..."

    def test_always_policy_exactly_limit(self):
        out = truncate_description("x" * 100, policy=TruncationPolicy.ALWAYS)
        assert out == "x" * 100 + "..."

    def test_always_policy_long_text(self):
        out = truncate_description("y" * 150, policy=TruncationPolicy.ALWAYS)
        assert out == "y" * 100 + "..."

    @pytest.mark.parametrize("empty", ["", None])
    def test_placeholder(self, empty):
        assert truncate_description(empty) == "No description provided"

    def test_custom_length(self):
        assert truncate_description("abcdef", max_len=3) == "abc..."


class TestPayloads:

    def setup_method(self):
        self.report = EmergencyReport.from_mapping(FIRE_REPORT)
        self.config = NotifierConfig()

    def test_topic_payload(self):
        payload = build_topic_payload(self.report, self.config)
        assert payload.title == "New fire Emergency"
        assert payload.body == "Building fire reported"
        assert payload.data == {"emergencyId": "E1", "type": "fire"}

    def test_nearby_payload_differs_only_in_title(self):
        topic = build_topic_payload(self.report, self.config)
        nearby = build_nearby_payload(self.report, self.config)
        assert nearby.title == "Emergency Nearby (fire)"
        assert nearby.body == topic.body
        assert nearby.data == topic.data

    def test_to_dict(self):
        d = build_topic_payload(self.report, self.config).to_dict()
        assert d["notification"]["title"] == "New fire Emergency"
        assert d["data"]["type"] == "fire"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Orchestration
# ═══════════════════════════════════════════════════════════════════════════

class TestNotify:

    def test_reference_example(self):
        sender = SimulatedPushSender()
        notifier = EmergencyNotifier(_example_directory(), sender)

        result = notifier.notify(FIRE_REPORT)

        assert [topic for topic, _ in sender.topic_sends] == ["fire"]
        assert len(sender.multicast_sends) == 1
        tokens, payload = sender.multicast_sends[0]
        assert tokens == ["T1"]
        assert payload.title == "Emergency Nearby (fire)"
        assert result.notified_nearby_users == 1
        assert result.users_scanned == 2
        assert result.status == "success"

    def test_accepts_validated_report(self):
        sender = SimulatedPushSender()
        report = EmergencyReport.from_mapping(FIRE_REPORT)
        result = EmergencyNotifier(_example_directory(), sender).notify(report)
        assert result.emergency_id == "E1"
        assert result.category is EmergencyCategory.FIRE

    def test_duplicate_tokens_sent_once(self):
        sender = SimulatedPushSender()
        directory = _directory(
            _entry("C1", UserRole.CITIZEN, 10.02, 10.0, "DUP"),
            _entry("C2", UserRole.CITIZEN, 10.0, 10.02, "DUP"),
            _entry("C3", UserRole.CITIZEN, 10.01, 10.01, "OTHER"),
        )
        result = EmergencyNotifier(directory, sender).notify(FIRE_REPORT)
        tokens, _ = sender.multicast_sends[0]
        assert sorted(tokens) == ["DUP", "OTHER"]
        assert len(tokens) == len(set(tokens))
        assert result.notified_nearby_users == 2

    def test_no_nearby_skips_multicast(self):
        sender = MagicMock(wraps=SimulatedPushSender())
        directory = _directory(
            _entry("R1", UserRole.RESPONDER, 10.01, 10.0, "T-R"),
            _entry("C1", UserRole.CITIZEN, 11.0, 10.0, "FAR"),
        )
        result = EmergencyNotifier(directory, sender).notify(FIRE_REPORT)

        sender.send_multicast.assert_not_called()
        sender.send_to_topic.assert_called_once()
        assert result.notified_nearby_users == 0
        assert result.nearby.status is DispatchStatus.SKIPPED
        assert result.status == "success"

    def test_empty_description_uses_placeholder(self):
        sender = SimulatedPushSender()
        report = dict(FIRE_REPORT, description="")
        EmergencyNotifier(_example_directory(), sender).notify(report)
        _, payload = sender.topic_sends[0]
        assert payload.body == "No description provided"

    def test_always_policy_applied_to_both_payloads(self):
        sender = SimulatedPushSender()
        config = NotifierConfig(truncation_policy=TruncationPolicy.ALWAYS)
        EmergencyNotifier(_example_directory(), sender, config).notify(FIRE_REPORT)
        assert sender.topic_sends[0][1].body == "Building fire reported..."
        assert sender.multicast_sends[0][1].body == "Building fire reported..."


class TestBranchIsolation:

    def test_topic_failure_does_not_block_multicast(self):
        sender = _failing_sender(topic_exc=PushDeliveryError("fcm-topic", "unavailable"))
        result = EmergencyNotifier(_example_directory(), sender).notify(FIRE_REPORT)

        sender.send_multicast.assert_called_once()
        assert result.topic.status is DispatchStatus.FAILED
        assert "unavailable" in result.topic.error_message
        assert result.nearby.status is DispatchStatus.SENT
        assert result.status == "partial"
        assert result.to_dict()["success"] is True

    def test_multicast_failure_is_recorded(self):
        sender = _failing_sender(multicast_exc=RuntimeError("quota exceeded"))
        result = EmergencyNotifier(_example_directory(), sender).notify(FIRE_REPORT)

        assert result.topic.status is DispatchStatus.SENT
        assert result.nearby.status is DispatchStatus.FAILED
        assert result.nearby.failure_count == 1
        assert result.notified_nearby_users == 1
        assert result.status == "partial"

    def test_both_fail_still_returns(self):
        sender = _failing_sender(
            topic_exc=RuntimeError("down"), multicast_exc=RuntimeError("down"),
        )
        result = EmergencyNotifier(_example_directory(), sender).notify(FIRE_REPORT)
        assert result.status == "failed"

    def test_partial_token_failures_propagate_to_result(self):
        sender = MagicMock()
        sender.send_to_topic.return_value = DispatchOutcome("topic", DispatchStatus.SENT)
        sender.send_multicast.return_value = DispatchOutcome(
            "nearby", DispatchStatus.PARTIAL,
            target_count=2, success_count=1, failure_count=1,
            failures=[TokenFailure("T2", "unregistered")],
        )
        directory = _directory(
            _entry("C1", UserRole.CITIZEN, 10.02, 10.0, "T1"),
            _entry("C2", UserRole.CITIZEN, 10.03, 10.0, "T2"),
        )
        result = EmergencyNotifier(directory, sender).notify(FIRE_REPORT)
        assert result.nearby.status is DispatchStatus.PARTIAL
        assert result.status == "partial"


class TestUnrecoverable:

    def test_invalid_input_attempts_nothing(self):
        sender = MagicMock()
        directory = MagicMock()
        with pytest.raises(InvalidArgumentError):
            EmergencyNotifier(directory, sender).notify({"type": "fire"})
        sender.send_to_topic.assert_not_called()
        directory.fetch_all.assert_not_called()

    def test_directory_failure_raises_internal(self):
        directory = MagicMock()
        directory.fetch_all.side_effect = ConnectionError("firestore unreachable")
        with pytest.raises(DirectoryUnavailableError) as exc_info:
            EmergencyNotifier(directory, SimulatedPushSender()).notify(FIRE_REPORT)
        assert exc_info.value.error_code == "internal"
        assert "firestore unreachable" in exc_info.value.message

    def test_directory_error_passes_through(self):
        directory = MagicMock()
        directory.fetch_all.side_effect = DirectoryUnavailableError("boom")
        with pytest.raises(DirectoryUnavailableError):
            EmergencyNotifier(directory, SimulatedPushSender()).notify(FIRE_REPORT)


class TestConcurrentBranches:

    def test_same_result_as_sequential(self):
        sender = SimulatedPushSender()
        notifier = EmergencyNotifier(
            _example_directory(), sender, concurrent_branches=True,
        )
        result = notifier.notify(FIRE_REPORT)
        assert [t for t, _ in sender.topic_sends] == ["fire"]
        assert sender.multicast_sends[0][0] == ["T1"]
        assert result.status == "success"

    def test_topic_joined_before_directory_error_propagates(self):
        sender = MagicMock(wraps=SimulatedPushSender())
        directory = MagicMock()
        directory.fetch_all.side_effect = OSError("io")
        notifier = EmergencyNotifier(directory, sender, concurrent_branches=True)
        with pytest.raises(DirectoryUnavailableError):
            notifier.notify(FIRE_REPORT)
        sender.send_to_topic.assert_called_once()

    def test_topic_failure_isolated(self):
        sender = _failing_sender(topic_exc=RuntimeError("topic down"))
        notifier = EmergencyNotifier(
            _example_directory(), sender, concurrent_branches=True,
        )
        result = notifier.notify(FIRE_REPORT)
        assert result.topic.status is DispatchStatus.FAILED
        assert result.nearby.status is DispatchStatus.SENT


class TestCancellation:

    def test_cancelled_before_start_sends_nothing(self):
        sender = MagicMock(wraps=SimulatedPushSender())
        cancel = threading.Event()
        cancel.set()
        result = EmergencyNotifier(_example_directory(), sender).notify(
            FIRE_REPORT, cancel,
        )
        sender.send_to_topic.assert_not_called()
        sender.send_multicast.assert_not_called()
        assert result.topic.status is DispatchStatus.SKIPPED
        assert result.nearby.status is DispatchStatus.SKIPPED
        assert result.nearby.error_message == "cancelled before send"

    def test_cancel_during_scan_skips_multicast(self):
        sender = SimulatedPushSender()
        cancel = threading.Event()
        entries = _example_directory().fetch_all()
        directory = MagicMock()
        directory.fetch_all.side_effect = lambda: cancel.set() or entries

        result = EmergencyNotifier(directory, sender).notify(FIRE_REPORT, cancel)

        assert [t for t, _ in sender.topic_sends] == ["fire"]
        assert len(sender.multicast_sends) == 0
        assert result.nearby.status is DispatchStatus.SKIPPED
        assert result.nearby.target_count == 1

    def test_unset_event_changes_nothing(self):
        sender = SimulatedPushSender()
        result = EmergencyNotifier(_example_directory(), sender).notify(
            FIRE_REPORT, threading.Event(),
        )
        assert result.status == "success"
        assert sender.multicast_sends[0][0] == ["T1"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Factory
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildNotifier:

    def test_simulation(self):
        notifier = build_notifier(Settings(
            PUSH_PROVIDER="simulation",
            NOTIFY_MAX_RADIUS_KM=3.0,
            NOTIFY_CONCURRENT_BRANCHES=True,
        ))
        assert isinstance(notifier.sender, SimulatedPushSender)
        assert isinstance(notifier.directory, InMemoryUserDirectory)
        assert notifier.config.max_radius_km == 3.0
        assert notifier.concurrent_branches is True

    def test_truncation_policy_case_insensitive(self):
        notifier = build_notifier(Settings(TRUNCATION_POLICY=" ALWAYS "))
        assert notifier.config.truncation_policy is TruncationPolicy.ALWAYS

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            build_notifier(Settings(PUSH_PROVIDER="carrier-pigeon"))

    def test_firebase_uses_explicit_app(self):
        fake_app = object()
        with patch(
            "backend.app.core.firebase.get_firebase_app", return_value=fake_app,
        ) as get_app, patch(
            "firebase_admin.firestore.client", return_value=MagicMock(),
        ) as fs_client:
            notifier = build_notifier(Settings(
                PUSH_PROVIDER="firebase", FCM_MULTICAST_BATCH_SIZE=100,
            ))
        get_app.assert_called_once()
        fs_client.assert_called_once_with(fake_app)
        assert notifier.sender.batch_size == 100
        assert notifier.directory.collection == "users"
