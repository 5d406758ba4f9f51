"""
Outbound message channels for anomaly alerts.

Adapters convert every send failure into a False result so the notifier can
leave the anomaly undelivered and retry it on the next pass.
"""

import html
import json
from abc import ABC, abstractmethod

import requests
import structlog
from kafka import KafkaProducer

from src.core.errors import ConfigurationError, DeliveryFailure

from .models import AnomalyConfig

logger = structlog.get_logger(__name__)


class MessageChannel(ABC):
    """Something that can deliver a rendered text message"""

    name: str = "channel"

    @abstractmethod
    def send(self, text: str) -> None:
        """Send one message

        Raises:
            DeliveryFailure: if the message was not accepted
        """

    def deliver(self, text: str) -> bool:
        """Send one message, reporting failure as False"""
        try:
            self.send(text)
            return True
        except DeliveryFailure as e:
            logger.error("Message delivery failed", channel=self.name, error=str(e))
            return False

    def close(self):
        pass


class TelegramChannel(MessageChannel):
    """Telegram Bot API sendMessage"""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        api_url: str = "https://api.telegram.org",
        timeout_seconds: float = 15.0,
        session: requests.Session | None = None,
    ):
        if not bot_token or not chat_id:
            raise ConfigurationError("Telegram bot token and chat id are required")

        self.chat_id = chat_id
        self.url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def send(self, text: str) -> None:
        payload = {
            "chat_id": self.chat_id,
            "text": html.escape(text, quote=False),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise DeliveryFailure(f"Telegram request failed: {e}") from e

        if not response.ok:
            raise DeliveryFailure(f"Telegram HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise DeliveryFailure("Telegram returned a non-JSON response") from e

        if not body.get("ok"):
            raise DeliveryFailure(f"Telegram API error: {body.get('description')}")

        logger.info(
            "Message sent to Telegram",
            message_id=body.get("result", {}).get("message_id"),
        )

    def close(self):
        self.session.close()


class KafkaChannel(MessageChannel):
    """Publishes rendered alerts to a Kafka topic"""

    name = "kafka"

    def __init__(self, bootstrap_servers: str, topic: str, producer: KafkaProducer | None = None):
        self.topic = topic
        if producer is not None:
            self.producer = producer
            return

        try:
            self.producer = KafkaProducer(
                bootstrap_servers=bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            )
            logger.info(
                "Kafka producer initialized",
                bootstrap_servers=bootstrap_servers,
                topic=topic,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka producer", error=str(e))
            raise ConfigurationError(f"Cannot connect to Kafka at {bootstrap_servers}: {e}") from e

    def send(self, text: str) -> None:
        try:
            future = self.producer.send(self.topic, {"type": "ccu_anomaly", "text": text})
            future.get(timeout=10)
        except Exception as e:
            raise DeliveryFailure(f"Kafka publish to {self.topic} failed: {e}") from e

    def close(self):
        self.producer.flush()
        self.producer.close()


def build_channel(config: AnomalyConfig) -> MessageChannel:
    """Construct the channel selected by `config.channel`

    Raises:
        ConfigurationError: on unknown channel or missing credentials
    """
    if config.channel == "telegram":
        return TelegramChannel(
            bot_token=config.telegram_bot_token,
            chat_id=config.telegram_chat_id,
            api_url=config.telegram_api_url,
            timeout_seconds=config.telegram_timeout_seconds,
        )
    if config.channel == "kafka":
        return KafkaChannel(config.kafka_bootstrap_servers, config.kafka_topic)
    raise ConfigurationError(f"Unknown channel: {config.channel}")
