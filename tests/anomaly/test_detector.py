"""
Tests for the rolling-baseline anomaly detector.
"""

import pandas as pd
import pytest

from src.anomaly.detector import AnomalyDetector, compute_baseline, evaluate
from src.anomaly.models import AnomalyConfig, AnomalySettings, Baseline, Direction
from src.core.errors import ClassificationError, ConfigurationError, StorageError

NOW_S = 1_709_294_400.0


def window(values):
    return pd.DataFrame({"timestamp_ms": range(len(values)), "ccu": values})


@pytest.fixture
def detector(window_db, anomaly_config):
    return AnomalyDetector(window_db, anomaly_config, clock=lambda: NOW_S)


class TestComputeBaseline:
    """Tests for compute_baseline."""

    def test_sample_standard_deviation(self):
        baseline = compute_baseline(pd.Series([90, 90, 110, 110, 100]))

        assert baseline.mean == 100.0
        assert baseline.stddev == pytest.approx(10.0)
        assert baseline.sample_count == 5

    def test_single_sample_has_zero_stddev(self):
        baseline = compute_baseline(pd.Series([42]))

        assert baseline.stddev == 0.0
        assert baseline.mean == 42.0

    def test_empty_window(self):
        assert compute_baseline(pd.Series([], dtype=float)).sample_count == 0


class TestEvaluate:
    """Tests for the threshold rule."""

    def test_zero_stddev_is_never_anomalous(self):
        baseline = Baseline(mean=100.0, stddev=0.0, sample_count=10)

        for n_sigma in (0.1, 1.0, 3.0):
            settings = AnomalySettings(n_sigma=n_sigma, min_delta_threshold=0)
            assert evaluate(baseline, 10_000, settings, min_points=5) is None

    def test_min_delta_blocks_small_absolute_moves(self):
        baseline = Baseline(mean=10.0, stddev=1.0, sample_count=10)
        settings = AnomalySettings(n_sigma=3.0, min_delta_threshold=10)

        # 5 > 3 sigma but below the 10-player floor
        assert evaluate(baseline, 15, settings, min_points=5) is None

    def test_delta_equal_to_threshold_is_not_anomalous(self):
        baseline = Baseline(mean=100.0, stddev=10.0, sample_count=10)
        settings = AnomalySettings(n_sigma=3.0, min_delta_threshold=10)

        assert evaluate(baseline, 130, settings, min_points=5) is None

    def test_downward_deviation(self):
        baseline = Baseline(mean=100.0, stddev=10.0, sample_count=10)
        settings = AnomalySettings(n_sigma=3.0, min_delta_threshold=10)

        delta, threshold, direction = evaluate(baseline, 60, settings, min_points=5)

        assert delta == -40.0
        assert threshold == 30.0
        assert direction == Direction.DOWN


class TestAnomalyDetector:
    """Tests for AnomalyDetector."""

    def test_upward_anomaly(self, detector):
        anomaly = detector.classify(1, 135)

        assert anomaly is not None
        assert anomaly.direction == Direction.UP
        assert anomaly.delta == pytest.approx(35.0)
        assert anomaly.threshold == pytest.approx(30.0)
        assert anomaly.mean == pytest.approx(100.0)
        assert anomaly.timestamp_ms == int(NOW_S * 1000)
        assert anomaly.id is None

    def test_within_threshold_is_normal(self, detector):
        assert detector.classify(1, 129) is None

    def test_constant_history_is_normal(self, detector, window_db):
        window_db.recent_samples.return_value = window([100] * 5)

        assert detector.classify(1, 100) is None
        assert detector.classify(1, 5000) is None

    def test_insufficient_data(self, detector, window_db):
        window_db.recent_samples.return_value = window([90, 110, 100, 95])

        assert detector.classify(1, 1000) is None

    def test_window_starts_24h_back(self, detector, window_db):
        detector.classify(7, 100)

        window_db.recent_samples.assert_called_once_with(
            7, int(NOW_S * 1000) - 24 * 60 * 60 * 1000
        )

    def test_settings_are_read_fresh_each_call(self, detector, window_db):
        window_db.get_anomaly_settings.side_effect = [
            AnomalySettings(n_sigma=3.0, min_delta_threshold=10),
            AnomalySettings(n_sigma=2.0, min_delta_threshold=10),
        ]

        assert detector.classify(1, 125) is None
        assert detector.classify(1, 125) is not None
        assert window_db.get_anomaly_settings.call_count == 2

    def test_explicit_settings_skip_storage(self, detector, window_db):
        detector.classify(1, 135, settings=AnomalySettings(n_sigma=5.0, min_delta_threshold=0))

        window_db.get_anomaly_settings.assert_not_called()

    def test_storage_failure_becomes_classification_error(self, detector, window_db):
        window_db.recent_samples.side_effect = StorageError("timeout")

        with pytest.raises(ClassificationError, match="timeout"):
            detector.classify(1, 135)

    def test_classify_and_record_persists_anomaly(self, detector, window_db):
        anomaly = detector.classify_and_record(1, 135)

        assert anomaly.id == 42
        window_db.record_anomaly.assert_called_once_with(anomaly)

    def test_classify_and_record_skips_normal_readings(self, detector, window_db):
        assert detector.classify_and_record(1, 100) is None

        window_db.record_anomaly.assert_not_called()


class TestAnomalySettings:
    """Tests for AnomalySettings validation."""

    def test_rejects_non_positive_sigma(self):
        with pytest.raises(ValueError, match="n_sigma"):
            AnomalySettings(n_sigma=0)

    def test_rejects_negative_min_delta(self):
        with pytest.raises(ValueError, match="min_delta_threshold"):
            AnomalySettings(min_delta_threshold=-1)

    def test_blank_template_means_default(self):
        assert AnomalySettings(custom_message_template="   ").custom_message_template is None


class TestAnomalyConfig:
    """Tests for AnomalyConfig validation."""

    def test_defaults_are_valid(self):
        AnomalyConfig().validate()

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ConfigurationError, match="Mars/Olympus"):
            AnomalyConfig(timezone="Mars/Olympus").validate()

    def test_rejects_unknown_channel(self):
        with pytest.raises(ConfigurationError, match="pigeon"):
            AnomalyConfig(channel="pigeon").validate()
