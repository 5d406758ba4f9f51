"""
Pytest configuration and shared fixtures.
"""

from unittest.mock import MagicMock

import pandas as pd
import pytest

from src.anomaly.models import AnomalyConfig, AnomalySettings, Direction, PendingAnomaly
from src.catalog.models import GameRef
from src.sampler.models import SamplerConfig

# 2024-03-01 12:00:00 UTC
NOW_MS = 1_709_294_400_000


@pytest.fixture
def games():
    """Three catalog entries."""
    return [
        GameRef(id=1, external_id="101", title="Alpha", reference_url="https://example.com/101"),
        GameRef(id=2, external_id="202", title="Bravo", reference_url="https://example.com/202"),
        GameRef(id=3, external_id="303", title="Charlie", reference_url="https://example.com/303"),
    ]


@pytest.fixture
def anomaly_config():
    """Anomaly configuration with the default thresholds."""
    return AnomalyConfig(
        postgres_database="test_db",
        postgres_user="test_user",
        postgres_password="test_password",
        min_points_in_window=5,
        default_settings=AnomalySettings(n_sigma=3.0, min_delta_threshold=10),
        message_delay_seconds=1.0,
        timezone="UTC",
    )


@pytest.fixture
def sampler_config():
    """Sampler configuration without pacing for fast tests."""
    return SamplerConfig(
        postgres_database="test_db",
        postgres_user="test_user",
        postgres_password="test_password",
        pace_delay_seconds=0.0,
        scrape_max_attempts=1,
        use_run_lock=False,
    )


@pytest.fixture
def settings():
    return AnomalySettings(n_sigma=3.0, min_delta_threshold=10)


@pytest.fixture
def window_db(settings):
    """Anomaly store stub whose window is mean 100, stddev 10."""
    db = MagicMock()
    db.recent_samples.return_value = pd.DataFrame(
        {"timestamp_ms": [NOW_MS - 5000 + i for i in range(5)], "ccu": [90, 90, 110, 110, 100]}
    )
    db.get_anomaly_settings.return_value = settings
    db.record_anomaly.return_value = 42
    return db


def make_pending(anomaly_id: int, delta: float = 35.0, **overrides) -> PendingAnomaly:
    """PendingAnomaly with a 100 +/- 10 baseline."""
    values = {
        "id": anomaly_id,
        "game_id": 1,
        "timestamp_ms": NOW_MS,
        "delta": delta,
        "mean": 100.0,
        "stddev": 10.0,
        "threshold": 30.0,
        "direction": Direction.UP if delta > 0 else Direction.DOWN,
        "game_title": "Alpha",
        "reference_url": "https://example.com/101",
    }
    values.update(overrides)
    return PendingAnomaly(**values)


@pytest.fixture
def pending_factory():
    return make_pending
