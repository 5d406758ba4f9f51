"""
Argument groups shared by the command-line entry points.
"""

import argparse
import os


def add_postgres_arguments(parser: argparse.ArgumentParser) -> None:
    """PostgreSQL connection flags with environment defaults"""
    group = parser.add_argument_group("PostgreSQL")
    group.add_argument(
        "--postgres-host",
        default=os.getenv("POSTGRES_HOST", "localhost"),
        help="PostgreSQL host",
    )
    group.add_argument(
        "--postgres-port",
        type=int,
        default=int(os.getenv("POSTGRES_PORT", "5432")),
        help="PostgreSQL port",
    )
    group.add_argument(
        "--postgres-db",
        default=os.getenv("POSTGRES_DB", "ccu_monitor"),
        help="PostgreSQL database",
    )
    group.add_argument(
        "--postgres-user",
        default=os.getenv("POSTGRES_USER", "monitor"),
        help="PostgreSQL user",
    )
    group.add_argument(
        "--postgres-password",
        default=os.getenv("POSTGRES_PASSWORD", "monitor_password"),
        help="PostgreSQL password",
    )


def add_log_level_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO)",
    )


def postgres_kwargs(args: argparse.Namespace) -> dict:
    """Keyword arguments for any PostgresConfig subclass"""
    return {
        "postgres_host": args.postgres_host,
        "postgres_port": args.postgres_port,
        "postgres_database": args.postgres_db,
        "postgres_user": args.postgres_user,
        "postgres_password": args.postgres_password,
    }
