"""
Generic PostgreSQL connection management.
Shared by the catalog store and the anomaly ledger.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import psycopg2
import structlog

from .errors import ConfigurationError, StorageError

logger = structlog.get_logger(__name__)


@dataclass
class PostgresConfig:
    """PostgreSQL settings shared by every subsystem config"""

    # Defaults are for local development only, production values come from env/secrets
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "ccu_monitor"
    postgres_user: str = "monitor"
    postgres_password: str = "monitor_password"

    def validate(self) -> None:
        if not self.postgres_host:
            raise ConfigurationError("postgres_host is required")
        if not 0 < self.postgres_port < 65536:
            raise ConfigurationError(f"Invalid postgres_port: {self.postgres_port}")
        if not self.postgres_database or not self.postgres_user:
            raise ConfigurationError("postgres_database and postgres_user are required")


class PostgresConnection:
    """Base class for PostgreSQL connection management

    Every public helper runs as a single transactional statement: commit on
    success, rollback and StorageError on failure.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        connect_timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.connection = None
        self._connect()

    def _connect(self):
        """Establish connection to PostgreSQL"""
        try:
            self.connection = psycopg2.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                connect_timeout=self.connect_timeout,
            )
            logger.info(
                "PostgreSQL connection established",
                host=self.host,
                database=self.database,
            )
        except Exception as e:
            logger.error("Failed to connect to PostgreSQL", host=self.host, error=str(e))
            raise StorageError(f"Failed to connect to PostgreSQL at {self.host}: {e}") from e

    @contextmanager
    def get_cursor(self):
        """Context manager for database cursor with automatic commit/rollback"""
        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            cursor.close()

    def execute(self, query: str, params: dict[str, Any] | tuple | None = None) -> int:
        """Execute a write statement and return the affected row count"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params or {})
                return cursor.rowcount
        except Exception as e:
            raise StorageError(f"Statement failed: {e}") from e

    def fetch_one(self, query: str, params: dict[str, Any] | tuple | None = None) -> dict | None:
        """Run a query and return the first row as a dict (or None)"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params or {})
                row = cursor.fetchone()
                if row is None:
                    return None
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row, strict=False))
        except Exception as e:
            raise StorageError(f"Query failed: {e}") from e

    def fetch_all(self, query: str, params: dict[str, Any] | tuple | None = None) -> list[dict]:
        """Run a query and return every row as a dict"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params or {})
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]
        except Exception as e:
            raise StorageError(f"Query failed: {e}") from e

    def check_health(self) -> bool:
        """Check if database connection is healthy"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute("SELECT 1")
                return cursor.fetchone()[0] == 1
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

    def close(self):
        """Close database connection"""
        if self.connection:
            self.connection.close()
            logger.info("PostgreSQL connection closed")
