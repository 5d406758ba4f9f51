"""
Data models and configuration for the circular CCU sampler.
"""

from dataclasses import dataclass, field
from enum import Enum

from src.anomaly.models import AnomalyConfig
from src.core.errors import ConfigurationError


MIN_PACE_DELAY_SECONDS = 2.0
MAX_RECORDED_ERRORS = 100


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SamplerConfig(AnomalyConfig):
    """Configuration for the sampling loop"""

    # Pacing
    pace_delay_seconds: float = MIN_PACE_DELAY_SECONDS

    # Scraping
    scrape_max_attempts: int = 1
    scrape_backoff_seconds: float = 1.0
    http_timeout_seconds: float = 15.0
    http_retry_attempts: int = 2
    game_url_template: str = "https://www.roblox.com/games/{external_id}/"

    # Run lock
    use_run_lock: bool = True
    lock_name: str = "ccu-monitor:sampler"
    lock_ttl_seconds: int = 120

    # Redis settings
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None

    def validate(self) -> None:
        super().validate()
        if self.pace_delay_seconds < MIN_PACE_DELAY_SECONDS:
            raise ConfigurationError(
                f"pace_delay_seconds must be >= {MIN_PACE_DELAY_SECONDS}, "
                f"got {self.pace_delay_seconds}"
            )
        if self.scrape_max_attempts < 1:
            raise ConfigurationError("scrape_max_attempts must be >= 1")
        if self.http_retry_attempts < 0:
            raise ConfigurationError("http_retry_attempts must be >= 0")
        if self.lock_ttl_seconds <= 0:
            raise ConfigurationError("lock_ttl_seconds must be > 0")
        if "{external_id}" not in self.game_url_template:
            raise ConfigurationError("game_url_template must contain {external_id}")


@dataclass
class RunSummary:
    """Counters for one sampling run"""

    total_games: int = 0
    successful_samples: int = 0
    failed_samples: int = 0
    errors: list[str] = field(default_factory=list)  # most recent MAX_RECORDED_ERRORS only
    error_count: int = 0
    anomalies_detected: int = 0
    total_cycles: int = 0
    average_time_per_game_ms: float = 0.0
    elapsed_seconds: float = 0.0

    @property
    def items_processed(self) -> int:
        return self.successful_samples + self.failed_samples

    def add_error(self, message: str):
        """Record an error, keeping only the most recent entries"""
        self.error_count += 1
        self.errors.append(message)
        if len(self.errors) > MAX_RECORDED_ERRORS:
            del self.errors[: len(self.errors) - MAX_RECORDED_ERRORS]
