"""
Tests for the settings CLI helpers.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.anomaly.models import AnomalySettings
from src.anomaly.settings import apply_updates, main, parse_arguments


class TestApplyUpdates:
    """Tests for apply_updates."""

    def test_no_flags_means_no_change(self):
        args = parse_arguments([])

        assert apply_updates(AnomalySettings(), args) is None

    def test_partial_update_keeps_other_fields(self):
        current = AnomalySettings(n_sigma=3.0, min_delta_threshold=10, custom_message_template="x")
        args = parse_arguments(["--n-sigma", "2.5"])

        updated = apply_updates(current, args)

        assert updated == AnomalySettings(
            n_sigma=2.5, min_delta_threshold=10, custom_message_template="x"
        )

    def test_clear_template(self):
        current = AnomalySettings(custom_message_template="{game_title}")
        args = parse_arguments(["--clear-template"])

        assert apply_updates(current, args).custom_message_template is None

    def test_invalid_value_raises(self):
        args = parse_arguments(["--min-delta", "-5"])

        with pytest.raises(ValueError):
            apply_updates(AnomalySettings(), args)


class TestMain:
    """Tests for the settings entry point."""

    @patch("src.anomaly.settings.AnomalyDatabase")
    def test_update_writes_settings(self, mock_db_cls):
        db = MagicMock()
        db.get_anomaly_settings.return_value = AnomalySettings()
        db.get_stats.return_value = {"total": 0, "pending": 0}
        mock_db_cls.return_value = db

        assert main(["--n-sigma", "4"]) == 0

        db.ensure_tables.assert_called_once()
        assert db.update_anomaly_settings.call_args.args[0].n_sigma == 4.0
        db.close.assert_called_once()

    @patch("src.anomaly.settings.AnomalyDatabase")
    def test_invalid_update_exits_nonzero(self, mock_db_cls):
        db = MagicMock()
        db.get_anomaly_settings.return_value = AnomalySettings()
        mock_db_cls.return_value = db

        assert main(["--n-sigma", "0"]) == 1

        db.update_anomaly_settings.assert_not_called()
