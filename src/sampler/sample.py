"""
CLI for the circular CCU sampler.

Usage:
    python -m src.sampler.sample [options]
"""

import argparse
import logging
import os
import signal
import sys

import structlog

from src.anomaly.database import AnomalyDatabase
from src.anomaly.detector import AnomalyDetector
from src.anomaly.notify import add_anomaly_arguments, default_settings_from_args
from src.catalog.database import CatalogDatabase
from src.core.cli import add_log_level_argument, add_postgres_arguments, postgres_kwargs
from src.core.errors import ConfigurationError, SchedulerBusyError
from src.core.logger import setup_logging
from src.core.retry import HttpClient

from .lock import RunLock
from .models import MIN_PACE_DELAY_SECONDS, SamplerConfig
from .scheduler import CircularScheduler
from .scraper import RobloxPageScraper

logger = structlog.get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Continuously sample concurrent players for every game in the catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Run until interrupted
        python -m src.sampler.sample

        # Run for one hour with a slower pace
        python -m src.sampler.sample --duration 3600 --pace 5

        # Local run without Redis
        python -m src.sampler.sample --no-lock
        """,
    )

    # Runtime settings
    parser.add_argument(
        "--duration",
        type=float,
        help="Run for N seconds then stop (default: infinite)",
    )
    parser.add_argument(
        "--pace",
        type=float,
        default=float(os.getenv("SAMPLER_PACE_SECONDS", str(MIN_PACE_DELAY_SECONDS))),
        help=f"Seconds to wait between games (minimum and default: {MIN_PACE_DELAY_SECONDS})",
    )
    parser.add_argument(
        "--scrape-attempts",
        type=int,
        default=int(os.getenv("SCRAPE_MAX_ATTEMPTS", "1")),
        help="Scrape attempts per game, on top of HTTP retries (default: 1)",
    )
    parser.add_argument(
        "--http-retries",
        type=int,
        default=int(os.getenv("HTTP_RETRY_ATTEMPTS", "2")),
        help="HTTP retries per request (default: 2)",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=float(os.getenv("HTTP_TIMEOUT_SECONDS", "15")),
        help="HTTP timeout in seconds (default: 15)",
    )
    parser.add_argument(
        "--no-detect",
        action="store_true",
        help="Store samples without anomaly classification",
    )

    # Redis configuration
    parser.add_argument(
        "--redis-host",
        default=os.getenv("REDIS_HOST", "localhost"),
        help="Redis host (default: localhost or REDIS_HOST env var)",
    )
    parser.add_argument(
        "--redis-port",
        type=int,
        default=int(os.getenv("REDIS_PORT", "6379")),
    )
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Run without the Redis run lock",
    )

    add_anomaly_arguments(parser)
    add_postgres_arguments(parser)
    add_log_level_argument(parser)

    return parser.parse_args(argv)


def build_config(args) -> SamplerConfig:
    """Build configuration from arguments"""
    config = SamplerConfig(
        pace_delay_seconds=args.pace,
        scrape_max_attempts=args.scrape_attempts,
        http_retry_attempts=args.http_retries,
        http_timeout_seconds=args.http_timeout,
        use_run_lock=not args.no_lock,
        redis_host=args.redis_host,
        redis_port=args.redis_port,
        min_points_in_window=args.min_points,
        default_settings=default_settings_from_args(args),
        timezone=args.timezone,
        **postgres_kwargs(args),
    )
    config.validate()
    if args.duration is not None and args.duration <= 0:
        raise ConfigurationError("--duration must be > 0")
    return config


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)
    setup_logging(level=getattr(logging, args.log_level))

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    catalog = None
    anomaly_db = None
    scraper = None
    try:
        catalog = CatalogDatabase(config)
        catalog.ensure_tables()

        detector = None
        if not args.no_detect:
            anomaly_db = AnomalyDatabase(config)
            anomaly_db.ensure_tables()
            detector = AnomalyDetector(anomaly_db, config)

        run_lock = RunLock.from_config(config) if config.use_run_lock else None

        client = HttpClient(
            timeout_seconds=config.http_timeout_seconds,
            retry_attempts=config.http_retry_attempts,
        )
        scraper = RobloxPageScraper(client, config.game_url_template)

        scheduler = CircularScheduler(
            catalog,
            scraper,
            config,
            detector=detector,
            run_lock=run_lock,
        )
        signal.signal(signal.SIGTERM, lambda signum, frame: scheduler.stop())

        if args.duration is not None:
            summary = scheduler.run(args.duration)
        else:
            summary = scheduler.run_until_stopped()

        logger.info(
            "Sampler completed",
            successful=summary.successful_samples,
            failed=summary.failed_samples,
            anomalies=summary.anomalies_detected,
            errors=summary.error_count,
        )
        return 0

    except (ConfigurationError, SchedulerBusyError) as e:
        logger.error("Sampler could not start", error=str(e))
        return 1

    except Exception as e:
        logger.error("Sampler failed", error=str(e), exc_info=True)
        return 1

    finally:
        if scraper is not None:
            scraper.close()
        if anomaly_db is not None:
            anomaly_db.close()
        if catalog is not None:
            catalog.close()


if __name__ == "__main__":
    sys.exit(main())
