"""
CLI for showing or updating the anomaly settings row.

Usage:
    python -m src.anomaly.settings                      # show
    python -m src.anomaly.settings --n-sigma 2.5        # update one field
    python -m src.anomaly.settings --clear-template     # back to default layout
"""

import argparse
import dataclasses
import logging
import sys

import structlog

from src.core.cli import add_log_level_argument, add_postgres_arguments
from src.core.errors import ConfigurationError
from src.core.logger import setup_logging

from .database import AnomalyDatabase
from .models import AnomalySettings
from .notify import add_anomaly_arguments, build_anomaly_config
from .notifier import TemplateToken

logger = structlog.get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    tokens = ", ".join("{" + token.value + "}" for token in TemplateToken)
    parser = argparse.ArgumentParser(
        description="Show or update CCU anomaly settings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
        Template tokens: {tokens}

        Examples:
        python -m src.anomaly.settings --n-sigma 2.5 --min-delta 50
        python -m src.anomaly.settings --template "{{game_title}}: {{delta}} players"
        """,
    )

    parser.add_argument("--n-sigma", type=float, help="Sigma multiplier (> 0)")
    parser.add_argument("--min-delta", type=int, help="Minimum absolute player delta (>= 0)")

    template = parser.add_mutually_exclusive_group()
    template.add_argument("--template", help="Custom message template")
    template.add_argument(
        "--clear-template",
        action="store_true",
        help="Drop the custom template and use the default layout",
    )

    add_anomaly_arguments(parser)
    add_postgres_arguments(parser)
    add_log_level_argument(parser)

    return parser.parse_args(argv)


def apply_updates(current: AnomalySettings, args) -> AnomalySettings | None:
    """New settings from the flags given, or None when nothing changes

    Raises:
        ValueError: on out-of-range values
    """
    changes = {}
    if args.n_sigma is not None:
        changes["n_sigma"] = args.n_sigma
    if args.min_delta is not None:
        changes["min_delta_threshold"] = args.min_delta
    if args.template is not None:
        changes["custom_message_template"] = args.template
    if args.clear_template:
        changes["custom_message_template"] = None

    if not changes:
        return None
    return dataclasses.replace(current, **changes)


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)
    setup_logging(level=getattr(logging, args.log_level))

    try:
        config = build_anomaly_config(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    db = None
    try:
        db = AnomalyDatabase(config)
        db.ensure_tables()
        current = db.get_anomaly_settings()

        try:
            updated = apply_updates(current, args)
        except ValueError as e:
            logger.error("Invalid settings", error=str(e))
            return 1

        if updated is not None:
            db.update_anomaly_settings(updated)
            current = db.get_anomaly_settings()

        logger.info(
            "Anomaly settings",
            n_sigma=current.n_sigma,
            min_delta_threshold=current.min_delta_threshold,
            custom_message_template=current.custom_message_template,
            **db.get_stats(),
        )
        return 0

    except Exception as e:
        logger.error("Settings command failed", error=str(e), exc_info=True)
        return 1

    finally:
        if db is not None:
            db.close()


if __name__ == "__main__":
    sys.exit(main())
