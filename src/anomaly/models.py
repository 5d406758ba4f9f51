"""
Data models and configuration for CCU anomaly detection and notification.
"""

from dataclasses import dataclass, field
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.database import PostgresConfig
from src.core.errors import ConfigurationError

WINDOW_MS = 24 * 60 * 60 * 1000


class Direction(str, Enum):
    """Sign of a deviation from the baseline"""

    UP = "up"
    DOWN = "down"


@dataclass
class AnomalySettings:
    """Runtime-tunable sensitivity and message layout (single row in storage)"""

    n_sigma: float = 3.0
    min_delta_threshold: int = 10
    custom_message_template: str | None = None

    def __post_init__(self):
        if self.n_sigma <= 0:
            raise ValueError(f"n_sigma must be > 0, got {self.n_sigma}")
        if self.min_delta_threshold < 0:
            raise ValueError(
                f"min_delta_threshold must be >= 0, got {self.min_delta_threshold}"
            )
        if self.custom_message_template is not None and not self.custom_message_template.strip():
            self.custom_message_template = None


@dataclass
class Baseline:
    """Mean and sample standard deviation over the trailing window"""

    mean: float
    stddev: float
    sample_count: int


@dataclass
class Anomaly:
    """A classification that crossed the threshold"""

    game_id: int
    timestamp_ms: int
    delta: float
    mean: float
    stddev: float
    threshold: float
    direction: Direction
    id: int | None = None
    delivered: bool = False

    @property
    def current_online(self) -> float:
        return self.mean + self.delta

    def to_db_dict(self) -> dict:
        """Convert to dict for database insertion"""
        return {
            "game_id": self.game_id,
            "timestamp_ms": self.timestamp_ms,
            "delta": self.delta,
            "mean": self.mean,
            "stddev": self.stddev,
            "threshold": self.threshold,
            "direction": self.direction.value,
        }


@dataclass
class PendingAnomaly(Anomaly):
    """Undelivered anomaly joined with its catalog entry"""

    game_title: str = ""
    reference_url: str = ""

    @classmethod
    def from_row(cls, row: dict) -> "PendingAnomaly":
        return cls(
            id=row["id"],
            game_id=row["game_id"],
            timestamp_ms=int(row["timestamp_ms"]),
            delta=float(row["delta"]),
            mean=float(row["mean"]),
            stddev=float(row["stddev"]),
            threshold=float(row["threshold"]),
            direction=Direction(row["direction"]),
            delivered=bool(row["delivered"]),
            game_title=row["game_title"],
            reference_url=row["reference_url"],
        )


@dataclass
class DeliveryReport:
    """Outcome of one notifier pass"""

    delivered: int = 0
    errors: int = 0


@dataclass
class AnomalyConfig(PostgresConfig):
    """Configuration for detection and notification"""

    # Classifier
    min_points_in_window: int = 5
    window_ms: int = WINDOW_MS

    # Defaults used when no settings row exists yet
    default_settings: AnomalySettings = field(default_factory=AnomalySettings)

    # Notifier
    channel: str = "telegram"  # telegram | kafka
    message_delay_seconds: float = 1.0
    timezone: str = "Europe/Moscow"

    # Telegram
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_api_url: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = 15.0

    # Kafka
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "ccu-anomalies"

    def validate(self) -> None:
        super().validate()
        if self.min_points_in_window < 2:
            raise ConfigurationError(
                f"min_points_in_window must be >= 2, got {self.min_points_in_window}"
            )
        if self.window_ms <= 0:
            raise ConfigurationError(f"window_ms must be > 0, got {self.window_ms}")
        if self.message_delay_seconds < 0:
            raise ConfigurationError("message_delay_seconds must be >= 0")
        if self.channel not in ("telegram", "kafka"):
            raise ConfigurationError(f"Unknown channel: {self.channel}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {self.timezone}") from e
