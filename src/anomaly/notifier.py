"""
Anomaly notifier: drains undelivered anomalies through a message channel.

Each anomaly is marked delivered only after the channel accepts it, and the
mark is a one-way latch, so a message is never completed twice.
"""

import re
import time
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo

import structlog

from src.core.errors import StorageError

from .channels import MessageChannel
from .database import AnomalyDatabase
from .models import AnomalyConfig, AnomalySettings, DeliveryReport, Direction, PendingAnomaly

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%d.%m.%Y, %H:%M:%S"
TOKEN_PATTERN = re.compile(r"\{(\w+)\}")

DIRECTION_LABELS = {
    Direction.UP: "📈 UP",
    Direction.DOWN: "📉 DOWN",
}


class TemplateToken(str, Enum):
    """Placeholders accepted in custom message templates"""

    GAME_TITLE = "game_title"
    DIRECTION = "direction"
    DELTA = "delta"
    N_SIGMA = "n_sigma"
    THRESHOLD = "threshold"
    CURRENT_ONLINE = "current_online"
    MEAN = "mean"
    STDDEV = "stddev"
    GAME_URL = "game_url"
    TIMESTAMP = "timestamp"


def format_timestamp(timestamp_ms: int, timezone: str = "Europe/Moscow") -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=ZoneInfo(timezone))
    return moment.strftime(TIMESTAMP_FORMAT)


def detection_sigma(anomaly: PendingAnomaly, settings: AnomalySettings) -> float:
    """Sigma multiplier in force when the anomaly was detected"""
    if anomaly.stddev > 0:
        return round(anomaly.threshold / anomaly.stddev, 2)
    return settings.n_sigma


def token_values(
    anomaly: PendingAnomaly,
    settings: AnomalySettings,
    timezone: str = "Europe/Moscow",
) -> dict[str, str]:
    """Presentation values for every template token"""
    delta = round(anomaly.delta)
    sign = "+" if anomaly.delta > 0 else ""
    return {
        TemplateToken.GAME_TITLE.value: anomaly.game_title,
        TemplateToken.DIRECTION.value: DIRECTION_LABELS[anomaly.direction],
        TemplateToken.DELTA.value: f"{sign}{delta}",
        TemplateToken.N_SIGMA.value: f"{detection_sigma(anomaly, settings):g}",
        TemplateToken.THRESHOLD.value: str(round(anomaly.threshold)),
        TemplateToken.CURRENT_ONLINE.value: str(round(anomaly.current_online)),
        TemplateToken.MEAN.value: str(round(anomaly.mean)),
        TemplateToken.STDDEV.value: str(round(anomaly.stddev)),
        TemplateToken.GAME_URL.value: anomaly.reference_url,
        TemplateToken.TIMESTAMP.value: format_timestamp(anomaly.timestamp_ms, timezone),
    }


def substitute(template: str, values: dict[str, str]) -> str:
    """Replace {token} placeholders; unknown tokens are left verbatim"""
    return TOKEN_PATTERN.sub(lambda m: values.get(m.group(1), m.group(0)), template)


DEFAULT_TEMPLATE = (
    "🚨 ANOMALY DETECTED\n\n"
    "🎮 Game: {game_title}\n"
    "📊 Direction: {direction}\n"
    "📈 Δ: {delta} ({n_sigma}σ={threshold})\n"
    "👥 Current online: {current_online}\n"
    "📊 Mean: {mean}\n"
    "📏 σ: {stddev}\n"
    "🔗 Link: {game_url}\n"
    "⏰ Time: {timestamp}"
)


def render_message(
    anomaly: PendingAnomaly,
    settings: AnomalySettings,
    timezone: str = "Europe/Moscow",
) -> str:
    """Render an alert with the custom template, or the default layout"""
    template = settings.custom_message_template or DEFAULT_TEMPLATE
    return substitute(template, token_values(anomaly, settings, timezone))


class AnomalyNotifier:
    """Delivers pending anomalies exactly once"""

    def __init__(self, db: AnomalyDatabase, channel: MessageChannel, config: AnomalyConfig):
        self.db = db
        self.channel = channel
        self.config = config

    def deliver_pending(self) -> DeliveryReport:
        """Deliver every undelivered anomaly, oldest first

        One failed anomaly never aborts the batch; it stays undelivered and is
        retried on the next call.
        """
        report = DeliveryReport()

        try:
            pending = self.db.list_undelivered_anomalies()
        except StorageError as e:
            logger.error("Failed to read undelivered anomalies", error=str(e))
            report.errors += 1
            return report

        if not pending:
            logger.debug("No undelivered anomalies")
            return report

        logger.info("Delivering anomaly notifications", count=len(pending))

        for index, anomaly in enumerate(pending):
            if self._deliver_one(anomaly):
                report.delivered += 1
            else:
                report.errors += 1

            if index < len(pending) - 1 and self.config.message_delay_seconds > 0:
                time.sleep(self.config.message_delay_seconds)

        logger.info("Notification pass completed", delivered=report.delivered, errors=report.errors)
        return report

    def _deliver_one(self, anomaly: PendingAnomaly) -> bool:
        try:
            settings = self.db.get_anomaly_settings()
            text = render_message(anomaly, settings, self.config.timezone)

            if not self.channel.deliver(text):
                logger.error("Anomaly notification not accepted", anomaly_id=anomaly.id)
                return False

            if not self.db.mark_anomaly_delivered(anomaly.id):
                logger.warning("Anomaly was already marked delivered", anomaly_id=anomaly.id)

            logger.info(
                "Anomaly notification delivered",
                anomaly_id=anomaly.id,
                game_title=anomaly.game_title,
            )
            return True

        except Exception as e:
            logger.error("Failed to deliver anomaly", anomaly_id=anomaly.id, error=str(e))
            return False

    def send_test_notification(self) -> bool:
        """Send a health-check message showing the current settings"""
        settings = self.db.get_anomaly_settings()
        now_ms = int(time.time() * 1000)
        text = (
            "🧪 TEST NOTIFICATION\n\n"
            "✅ CCU anomaly monitor is running\n"
            f"⏰ Time: {format_timestamp(now_ms, self.config.timezone)}\n"
            f"🔧 Settings: Nσ={settings.n_sigma:g}, "
            f"min Δ={settings.min_delta_threshold}, "
            f"min points={self.config.min_points_in_window}"
        )
        return self.channel.deliver(text)
