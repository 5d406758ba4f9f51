"""
CLI for delivering pending anomaly notifications.

Usage:
    python -m src.anomaly.notify [options]
"""

import argparse
import logging
import os
import sys
import time

import structlog

from src.core.cli import add_log_level_argument, add_postgres_arguments, postgres_kwargs
from src.core.errors import ConfigurationError
from src.core.logger import setup_logging

from .channels import build_channel
from .database import AnomalyDatabase
from .models import AnomalyConfig, AnomalySettings
from .notifier import AnomalyNotifier

logger = structlog.get_logger(__name__)


def add_anomaly_arguments(parser: argparse.ArgumentParser) -> None:
    """Detection defaults, shared with the sampler CLI"""
    group = parser.add_argument_group("Detection")
    group.add_argument(
        "--min-points",
        type=int,
        default=int(os.getenv("MIN_POINTS_IN_WINDOW", "5")),
        help="Minimum samples in the 24h window before classifying (default: 5)",
    )
    group.add_argument(
        "--default-n-sigma",
        type=float,
        default=float(os.getenv("ANOMALY_N_SIGMA", "3.0")),
        help="n_sigma used while no settings row exists (default: 3.0)",
    )
    group.add_argument(
        "--default-min-delta",
        type=int,
        default=int(os.getenv("ANOMALY_MIN_DELTA", "10")),
        help="min_delta_threshold used while no settings row exists (default: 10)",
    )
    group.add_argument(
        "--timezone",
        default=os.getenv("NOTIFY_TIMEZONE", "Europe/Moscow"),
        help="Timezone for rendered timestamps (default: Europe/Moscow)",
    )


def add_channel_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("Channel")
    group.add_argument(
        "--channel",
        choices=["telegram", "kafka"],
        default=os.getenv("NOTIFY_CHANNEL", "telegram"),
        help="Delivery channel (default: telegram)",
    )
    group.add_argument("--telegram-token", default=os.getenv("TELEGRAM_BOT_TOKEN"))
    group.add_argument("--telegram-chat-id", default=os.getenv("TELEGRAM_CHAT_ID"))
    group.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        help="Kafka bootstrap servers (default: localhost:9092)",
    )
    group.add_argument(
        "--kafka-topic",
        default=os.getenv("KAFKA_ALERT_TOPIC", "ccu-anomalies"),
        help="Kafka topic for alerts (default: ccu-anomalies)",
    )


def default_settings_from_args(args) -> AnomalySettings:
    try:
        return AnomalySettings(
            n_sigma=args.default_n_sigma,
            min_delta_threshold=args.default_min_delta,
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_anomaly_config(args) -> AnomalyConfig:
    """Build configuration from arguments"""
    config = AnomalyConfig(
        min_points_in_window=args.min_points,
        default_settings=default_settings_from_args(args),
        timezone=args.timezone,
        channel=getattr(args, "channel", "telegram"),
        telegram_bot_token=getattr(args, "telegram_token", None),
        telegram_chat_id=getattr(args, "telegram_chat_id", None),
        kafka_bootstrap_servers=getattr(args, "kafka_servers", "localhost:9092"),
        kafka_topic=getattr(args, "kafka_topic", "ccu-anomalies"),
        **postgres_kwargs(args),
    )
    config.validate()
    return config


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Deliver pending CCU anomaly notifications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Deliver everything pending once
        python -m src.anomaly.notify

        # Send a test message
        python -m src.anomaly.notify --test

        # Keep delivering every 60 seconds
        python -m src.anomaly.notify --watch 60
        """,
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--test", action="store_true", help="Send a test notification and exit")
    mode.add_argument(
        "--watch",
        type=float,
        metavar="N",
        help="Repeat delivery every N seconds until interrupted",
    )

    add_anomaly_arguments(parser)
    add_channel_arguments(parser)
    add_postgres_arguments(parser)
    add_log_level_argument(parser)

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)
    setup_logging(level=getattr(logging, args.log_level))

    try:
        config = build_anomaly_config(args)
        if args.watch is not None and args.watch <= 0:
            raise ConfigurationError("--watch must be > 0")
        channel = build_channel(config)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    db = None
    try:
        db = AnomalyDatabase(config)
        notifier = AnomalyNotifier(db, channel, config)

        if args.test:
            ok = notifier.send_test_notification()
            logger.info("Test notification finished", delivered=ok)
            return 0 if ok else 1

        while True:
            report = notifier.deliver_pending()
            if args.watch is None:
                return 0 if report.errors == 0 else 1
            time.sleep(args.watch)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Notifier failed", error=str(e), exc_info=True)
        return 1

    finally:
        channel.close()
        if db is not None:
            db.close()


if __name__ == "__main__":
    sys.exit(main())
