"""
PostgreSQL operations for the anomaly ledger.

Handles:
- Reading the trailing CCU window for a game
- Reading and updating the anomaly settings row
- Recording anomalies and latching their delivery
"""

import pandas as pd
import structlog

from src.core.database import PostgresConnection
from src.core.errors import StorageError

from .models import Anomaly, AnomalyConfig, AnomalySettings, PendingAnomaly

logger = structlog.get_logger(__name__)

SAMPLE_COLUMNS = ["timestamp_ms", "ccu"]


class AnomalyDatabase(PostgresConnection):
    """Database operations for anomaly detection and delivery"""

    def __init__(self, config: AnomalyConfig):
        super().__init__(
            host=config.postgres_host,
            port=config.postgres_port,
            database=config.postgres_database,
            user=config.postgres_user,
            password=config.postgres_password,
        )
        self.config = config

    def ensure_tables(self):
        """Create anomalies and anomaly_settings tables if they don't exist

        Expects the games table to exist already.
        """
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS anomalies (
                id SERIAL PRIMARY KEY,
                game_id INTEGER NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                timestamp_ms BIGINT NOT NULL,
                delta DOUBLE PRECISION NOT NULL,
                mean DOUBLE PRECISION NOT NULL,
                stddev DOUBLE PRECISION NOT NULL,
                threshold DOUBLE PRECISION NOT NULL,
                direction VARCHAR(4) NOT NULL CHECK (direction IN ('up', 'down')),
                delivered BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_anomalies_pending
            ON anomalies(delivered, timestamp_ms);

            CREATE TABLE IF NOT EXISTS anomaly_settings (
                id INTEGER PRIMARY KEY DEFAULT 1 CHECK (id = 1),
                n_sigma DOUBLE PRECISION NOT NULL CHECK (n_sigma > 0),
                min_delta_threshold INTEGER NOT NULL CHECK (min_delta_threshold >= 0),
                custom_message_template TEXT,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
        logger.info("Ensured anomalies and anomaly_settings tables exist")

    def recent_samples(self, game_id: int, since_ms: int) -> pd.DataFrame:
        """Samples for one game at or after `since_ms`, oldest first

        Returns:
            DataFrame with columns ['timestamp_ms', 'ccu']

        Raises:
            StorageError: if the query fails
        """
        rows = self.fetch_all(
            """
            SELECT timestamp_ms, ccu
            FROM samples
            WHERE game_id = %(game_id)s AND timestamp_ms >= %(since_ms)s
            ORDER BY timestamp_ms, id
            """,
            {"game_id": game_id, "since_ms": since_ms},
        )
        df = pd.DataFrame(rows, columns=SAMPLE_COLUMNS)
        logger.debug("Queried sample window", game_id=game_id, since_ms=since_ms, rows=len(df))
        return df

    def get_anomaly_settings(self) -> AnomalySettings:
        """Current settings, or the configured defaults when no row exists"""
        row = self.fetch_one(
            """
            SELECT n_sigma, min_delta_threshold, custom_message_template
            FROM anomaly_settings
            WHERE id = 1
            """
        )
        if row is None:
            return self.config.default_settings

        return AnomalySettings(
            n_sigma=float(row["n_sigma"]),
            min_delta_threshold=int(row["min_delta_threshold"]),
            custom_message_template=row["custom_message_template"],
        )

    def update_anomaly_settings(self, settings: AnomalySettings) -> None:
        """Replace the settings row"""
        self.execute(
            """
            INSERT INTO anomaly_settings (id, n_sigma, min_delta_threshold, custom_message_template)
            VALUES (1, %(n_sigma)s, %(min_delta_threshold)s, %(custom_message_template)s)
            ON CONFLICT (id) DO UPDATE SET
                n_sigma = EXCLUDED.n_sigma,
                min_delta_threshold = EXCLUDED.min_delta_threshold,
                custom_message_template = EXCLUDED.custom_message_template,
                updated_at = NOW()
            """,
            {
                "n_sigma": settings.n_sigma,
                "min_delta_threshold": settings.min_delta_threshold,
                "custom_message_template": settings.custom_message_template,
            },
        )
        logger.info(
            "Anomaly settings updated",
            n_sigma=settings.n_sigma,
            min_delta_threshold=settings.min_delta_threshold,
            custom_template=settings.custom_message_template is not None,
        )

    def record_anomaly(self, anomaly: Anomaly) -> int:
        """Insert an undelivered anomaly and return its id

        Raises:
            StorageError: if the insert fails
        """
        row = self.fetch_one(
            """
            INSERT INTO anomalies (
                game_id, timestamp_ms, delta, mean, stddev, threshold, direction
            ) VALUES (
                %(game_id)s, %(timestamp_ms)s, %(delta)s, %(mean)s,
                %(stddev)s, %(threshold)s, %(direction)s
            )
            RETURNING id
            """,
            anomaly.to_db_dict(),
        )
        if row is None:
            raise StorageError(f"Insert returned no id for anomaly on game {anomaly.game_id}")

        logger.debug(
            "Anomaly recorded",
            anomaly_id=row["id"],
            game_id=anomaly.game_id,
            direction=anomaly.direction.value,
        )
        return row["id"]

    def list_undelivered_anomalies(self) -> list[PendingAnomaly]:
        """Undelivered anomalies joined with their game, oldest first"""
        rows = self.fetch_all(
            """
            SELECT
                a.id, a.game_id, a.timestamp_ms, a.delta, a.mean, a.stddev,
                a.threshold, a.direction, a.delivered,
                g.title AS game_title, g.reference_url
            FROM anomalies a
            JOIN games g ON g.id = a.game_id
            WHERE a.delivered = FALSE
            ORDER BY a.timestamp_ms, a.id
            """
        )
        return [PendingAnomaly.from_row(row) for row in rows]

    def mark_anomaly_delivered(self, anomaly_id: int) -> bool:
        """Latch the delivered flag

        Returns:
            True if this call flipped the flag, False if it was already set
            or the anomaly does not exist
        """
        updated = self.execute(
            "UPDATE anomalies SET delivered = TRUE WHERE id = %(id)s AND delivered = FALSE",
            {"id": anomaly_id},
        )
        return updated == 1

    def get_stats(self) -> dict[str, int]:
        """Anomaly counts by delivery state"""
        row = self.fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE delivered = FALSE) AS pending
            FROM anomalies
            """
        )
        return {key: int(value or 0) for key, value in (row or {}).items()}
