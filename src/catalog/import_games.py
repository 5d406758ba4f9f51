"""
CLI for importing a game catalog from CSV.

Usage:
    python -m src.catalog.import_games --csv games.csv
"""

import argparse
import logging
import sys

import structlog

from src.core.cli import add_log_level_argument, add_postgres_arguments, postgres_kwargs
from src.core.errors import ConfigurationError
from src.core.logger import setup_logging

from .database import CatalogDatabase
from .models import CatalogConfig
from .sync import load_listings_csv, sync_games

logger = structlog.get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Import a game catalog (external_id, title, url) from CSV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Import listings
        python -m src.catalog.import_games --csv data/games.csv

        # Only create tables and show row counts
        python -m src.catalog.import_games --stats
        """,
    )

    parser.add_argument("--csv", help="CSV file with external_id, title and url columns")
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Only print catalog row counts",
    )

    add_postgres_arguments(parser)
    add_log_level_argument(parser)

    return parser.parse_args(argv)


def build_config(args) -> CatalogConfig:
    """Build configuration from arguments"""
    config = CatalogConfig(csv_path=args.csv, **postgres_kwargs(args))
    config.validate()
    if not args.stats and not config.csv_path:
        raise ConfigurationError("--csv is required unless --stats is given")
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

    db = None
    try:
        db = CatalogDatabase(config)
        db.ensure_tables()

        if config.csv_path:
            listings = load_listings_csv(config.csv_path)
            sync_games(db, listings.to_dict(orient="records"))

        logger.info("Catalog statistics", **db.get_stats())
        return 0

    except Exception as e:
        logger.error("Catalog import failed", error=str(e), exc_info=True)
        return 1

    finally:
        if db is not None:
            db.close()


if __name__ == "__main__":
    sys.exit(main())
