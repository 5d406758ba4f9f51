"""
CCU anomaly detection and exactly-once notification.
"""

from .channels import KafkaChannel, MessageChannel, TelegramChannel
from .database import AnomalyDatabase
from .detector import AnomalyDetector
from .models import Anomaly, AnomalyConfig, AnomalySettings, DeliveryReport, PendingAnomaly
from .notifier import AnomalyNotifier, render_message

__all__ = [
    "Anomaly",
    "AnomalyConfig",
    "AnomalyDatabase",
    "AnomalyDetector",
    "AnomalyNotifier",
    "AnomalySettings",
    "DeliveryReport",
    "KafkaChannel",
    "MessageChannel",
    "PendingAnomaly",
    "TelegramChannel",
    "render_message",
]
