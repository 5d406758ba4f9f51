"""
Tests for message rendering and exactly-once delivery.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.anomaly.channels import MessageChannel
from src.anomaly.models import AnomalySettings, Direction
from src.anomaly.notifier import (
    AnomalyNotifier,
    TemplateToken,
    format_timestamp,
    render_message,
    substitute,
)
from src.core.errors import DeliveryFailure, StorageError

# 2024-03-01 12:00:00 UTC
NOW_MS = 1_709_294_400_000


class FakeLedger:
    """In-memory anomaly ledger with a one-way delivered flag."""

    def __init__(self, anomalies, settings=None):
        self.anomalies = {a.id: a for a in anomalies}
        self.settings = settings or AnomalySettings()
        self.mark_calls = []

    def list_undelivered_anomalies(self):
        pending = [a for a in self.anomalies.values() if not a.delivered]
        return sorted(pending, key=lambda a: (a.timestamp_ms, a.id))

    def mark_anomaly_delivered(self, anomaly_id):
        self.mark_calls.append(anomaly_id)
        anomaly = self.anomalies[anomaly_id]
        if anomaly.delivered:
            return False
        anomaly.delivered = True
        return True

    def get_anomaly_settings(self):
        return self.settings


class RecordingChannel(MessageChannel):
    """Channel that fails the first `failures` sends."""

    name = "recording"

    def __init__(self, failures=0):
        self.failures = failures
        self.sent = []

    def send(self, text):
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryFailure("channel down")
        self.sent.append(text)


class TestRendering:
    """Tests for render_message and template substitution."""

    def test_default_layout(self, pending_factory):
        text = render_message(pending_factory(1), AnomalySettings(n_sigma=3.0), timezone="UTC")

        assert "Game: Alpha" in text
        assert "📈 UP" in text
        assert "Δ: +35 (3σ=30)" in text
        assert "Current online: 135" in text
        assert "Mean: 100" in text
        assert "σ: 10" in text
        assert "https://example.com/101" in text
        assert "01.03.2024, 12:00:00" in text

    def test_custom_template(self, pending_factory):
        settings = AnomalySettings(
            custom_message_template="{game_title} {direction} {delta} of {mean}"
        )

        text = render_message(pending_factory(1, delta=-40.0), settings, timezone="UTC")

        assert text == "Alpha 📉 DOWN -40 of 100"

    def test_unknown_tokens_pass_through(self):
        assert substitute("{game_title} {nope}", {"game_title": "A"}) == "A {nope}"

    def test_every_token_is_rendered(self, pending_factory):
        template = " ".join("{" + token.value + "}" for token in TemplateToken)
        settings = AnomalySettings(custom_message_template=template)

        text = render_message(pending_factory(1), settings, timezone="UTC")

        assert "{" not in text

    def test_sigma_comes_from_detection_not_current_settings(self, pending_factory):
        settings = AnomalySettings(n_sigma=5.0, custom_message_template="{n_sigma}σ={threshold}")

        # detected with 3 sigma: threshold 30 over a stddev of 10
        text = render_message(pending_factory(1), settings, timezone="UTC")

        assert text == "3σ=30"

    def test_timestamp_uses_timezone(self):
        assert format_timestamp(NOW_MS, "Europe/Moscow") == "01.03.2024, 15:00:00"


@patch("src.anomaly.notifier.time.sleep")
class TestAnomalyNotifier:
    """Tests for AnomalyNotifier.deliver_pending."""

    def test_delivers_in_order_and_latches(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger(
            [
                pending_factory(2, timestamp_ms=NOW_MS + 1000, game_title="Second"),
                pending_factory(1, timestamp_ms=NOW_MS, game_title="First"),
            ]
        )
        channel = RecordingChannel()
        notifier = AnomalyNotifier(ledger, channel, anomaly_config)

        report = notifier.deliver_pending()

        assert report.delivered == 2
        assert report.errors == 0
        assert "First" in channel.sent[0]
        assert "Second" in channel.sent[1]
        assert ledger.mark_calls == [1, 2]

    def test_second_pass_delivers_nothing(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger([pending_factory(1)])
        channel = RecordingChannel()
        notifier = AnomalyNotifier(ledger, channel, anomaly_config)

        notifier.deliver_pending()
        report = notifier.deliver_pending()

        assert report.delivered == 0
        assert len(channel.sent) == 1

    def test_failure_then_success_delivers_once(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger([pending_factory(1)])
        channel = RecordingChannel(failures=1)
        notifier = AnomalyNotifier(ledger, channel, anomaly_config)

        first = notifier.deliver_pending()
        second = notifier.deliver_pending()

        assert first.delivered == 0
        assert first.errors == 1
        assert second.delivered == 1
        assert first.delivered + second.delivered == 1
        assert ledger.mark_calls == [1]

    def test_one_failure_does_not_abort_batch(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger([pending_factory(1), pending_factory(2, timestamp_ms=NOW_MS + 1)])
        channel = RecordingChannel(failures=1)
        notifier = AnomalyNotifier(ledger, channel, anomaly_config)

        report = notifier.deliver_pending()

        assert report.delivered == 1
        assert report.errors == 1
        assert not ledger.anomalies[1].delivered
        assert ledger.anomalies[2].delivered

    def test_sleeps_between_messages_only(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger([pending_factory(i, timestamp_ms=NOW_MS + i) for i in (1, 2, 3)])
        notifier = AnomalyNotifier(ledger, RecordingChannel(), anomaly_config)

        notifier.deliver_pending()

        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(1.0)

    def test_read_failure_counts_one_error(self, mock_sleep, anomaly_config):
        db = MagicMock()
        db.list_undelivered_anomalies.side_effect = StorageError("down")
        channel = MagicMock()
        notifier = AnomalyNotifier(db, channel, anomaly_config)

        report = notifier.deliver_pending()

        assert report.delivered == 0
        assert report.errors == 1
        channel.deliver.assert_not_called()

    def test_mark_failure_leaves_anomaly_pending(self, mock_sleep, pending_factory, anomaly_config):
        db = MagicMock()
        db.list_undelivered_anomalies.return_value = [pending_factory(1)]
        db.get_anomaly_settings.return_value = AnomalySettings()
        db.mark_anomaly_delivered.side_effect = StorageError("lost connection")
        channel = MagicMock()
        channel.deliver.return_value = True
        notifier = AnomalyNotifier(db, channel, anomaly_config)

        report = notifier.deliver_pending()

        assert report.delivered == 0
        assert report.errors == 1

    def test_settings_read_per_message(self, mock_sleep, pending_factory, anomaly_config):
        ledger = FakeLedger([pending_factory(1), pending_factory(2, timestamp_ms=NOW_MS + 1)])
        ledger.get_anomaly_settings = MagicMock(
            side_effect=[
                AnomalySettings(custom_message_template="one {game_title}"),
                AnomalySettings(custom_message_template="two {game_title}"),
            ]
        )
        channel = RecordingChannel()

        AnomalyNotifier(ledger, channel, anomaly_config).deliver_pending()

        assert channel.sent == ["one Alpha", "two Alpha"]

    def test_test_notification_reports_settings(self, mock_sleep, anomaly_config):
        ledger = FakeLedger([], settings=AnomalySettings(n_sigma=2.5, min_delta_threshold=50))
        channel = RecordingChannel()

        ok = AnomalyNotifier(ledger, channel, anomaly_config).send_test_notification()

        assert ok is True
        assert "Nσ=2.5" in channel.sent[0]
        assert "min Δ=50" in channel.sent[0]


@pytest.mark.parametrize(
    ("delta", "expected"),
    [(35.4, "+35"), (-35.4, "-35"), (0.0, "0")],
)
def test_delta_sign(pending_factory, delta, expected):
    settings = AnomalySettings(custom_message_template="{delta}")
    anomaly = pending_factory(1, delta=delta, direction=Direction.UP)

    assert render_message(anomaly, settings, timezone="UTC") == expected
