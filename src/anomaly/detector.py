"""
Rolling-baseline anomaly detector for CCU samples.

A reading is anomalous when it deviates from the trailing-window mean by
more than n_sigma standard deviations and by at least min_delta_threshold
players.
"""

import time

import pandas as pd
import structlog

from src.core.errors import ClassificationError, StorageError

from .database import AnomalyDatabase
from .models import Anomaly, AnomalyConfig, AnomalySettings, Baseline, Direction

logger = structlog.get_logger(__name__)


def compute_baseline(values: pd.Series) -> Baseline:
    """Mean and sample standard deviation (n - 1) of a window

    stddev is 0 for windows of zero or one sample.
    """
    count = len(values)
    if count == 0:
        return Baseline(mean=0.0, stddev=0.0, sample_count=0)

    values = values.astype(float)
    mean = float(values.mean())
    stddev = float(values.std(ddof=1)) if count > 1 else 0.0
    return Baseline(mean=mean, stddev=stddev, sample_count=count)


def evaluate(
    baseline: Baseline,
    current_ccu: float,
    settings: AnomalySettings,
    min_points: int,
) -> tuple[float, float, Direction] | None:
    """Decide whether `current_ccu` is anomalous against `baseline`

    Returns:
        (delta, threshold, direction) when anomalous, else None
    """
    if baseline.sample_count < min_points:
        return None
    if baseline.stddev == 0:
        return None

    delta = current_ccu - baseline.mean
    threshold = settings.n_sigma * baseline.stddev

    if abs(delta) > threshold and abs(delta) >= settings.min_delta_threshold:
        direction = Direction.UP if delta > 0 else Direction.DOWN
        return delta, threshold, direction
    return None


class AnomalyDetector:
    """Classifies readings against each game's own recent history"""

    def __init__(self, db: AnomalyDatabase, config: AnomalyConfig, clock=time.time):
        self.db = db
        self.config = config
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def baseline_for(self, game_id: int, now_ms: int | None = None) -> Baseline:
        """Baseline over the trailing window for one game

        Raises:
            ClassificationError: if the window cannot be read
        """
        now_ms = self._now_ms() if now_ms is None else now_ms
        since_ms = now_ms - self.config.window_ms
        try:
            window = self.db.recent_samples(game_id, since_ms)
        except StorageError as e:
            raise ClassificationError(f"Cannot read window for game {game_id}: {e}") from e
        return compute_baseline(window["ccu"])

    def classify(
        self,
        game_id: int,
        current_ccu: int,
        settings: AnomalySettings | None = None,
    ) -> Anomaly | None:
        """Classify a reading against prior history (nothing is persisted)

        Args:
            game_id: Catalog id of the game
            current_ccu: The new reading
            settings: Sensitivity to use; read fresh from storage when None

        Returns:
            An unpersisted Anomaly, or None when the reading is normal or the
            window holds too little data

        Raises:
            ClassificationError: on storage read failures
        """
        now_ms = self._now_ms()

        if settings is None:
            try:
                settings = self.db.get_anomaly_settings()
            except StorageError as e:
                raise ClassificationError(f"Cannot read anomaly settings: {e}") from e

        baseline = self.baseline_for(game_id, now_ms)
        result = evaluate(baseline, current_ccu, settings, self.config.min_points_in_window)
        if result is None:
            return None

        delta, threshold, direction = result
        logger.info(
            "Anomaly detected",
            game_id=game_id,
            current_ccu=current_ccu,
            mean=round(baseline.mean, 2),
            stddev=round(baseline.stddev, 2),
            delta=round(delta, 2),
            threshold=round(threshold, 2),
            direction=direction.value,
        )
        return Anomaly(
            game_id=game_id,
            timestamp_ms=now_ms,
            delta=delta,
            mean=baseline.mean,
            stddev=baseline.stddev,
            threshold=threshold,
            direction=direction,
        )

    def record(self, anomaly: Anomaly) -> int:
        """Persist an anomaly and set its id"""
        anomaly.id = self.db.record_anomaly(anomaly)
        return anomaly.id

    def classify_and_record(self, game_id: int, current_ccu: int) -> Anomaly | None:
        """Classify a reading and persist it when anomalous"""
        anomaly = self.classify(game_id, current_ccu)
        if anomaly is not None:
            self.record(anomaly)
        return anomaly
