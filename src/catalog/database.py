"""
PostgreSQL operations for the game catalog and the CCU sample log.

Handles:
- Listing the catalog snapshot used by the sampler
- Appending CCU samples
- Upserting catalog listings keyed on the external id
"""

import structlog

from src.core.database import PostgresConfig, PostgresConnection
from src.core.errors import StorageError

from .models import GameRef, UpsertResult

logger = structlog.get_logger(__name__)


class CatalogDatabase(PostgresConnection):
    """Database operations for games and samples"""

    def __init__(self, config: PostgresConfig):
        super().__init__(
            host=config.postgres_host,
            port=config.postgres_port,
            database=config.postgres_database,
            user=config.postgres_user,
            password=config.postgres_password,
        )
        self.config = config

    def ensure_tables(self):
        """Create games and samples tables if they don't exist"""
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS games (
                id SERIAL PRIMARY KEY,
                external_id VARCHAR(64) NOT NULL UNIQUE,
                title TEXT NOT NULL,
                reference_url TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_games_reference_url ON games(reference_url);

            CREATE TABLE IF NOT EXISTS samples (
                id BIGSERIAL PRIMARY KEY,
                game_id INTEGER NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                timestamp_ms BIGINT NOT NULL,
                ccu INTEGER NOT NULL CHECK (ccu >= 0)
            );

            CREATE INDEX IF NOT EXISTS idx_samples_game_time ON samples(game_id, timestamp_ms);
            """
        )
        logger.info("Ensured games and samples tables exist")

    def list_games(self) -> list[GameRef]:
        """Return the whole catalog ordered by id"""
        rows = self.fetch_all(
            "SELECT id, external_id, title, reference_url FROM games ORDER BY id"
        )
        games = [GameRef.from_row(row) for row in rows]
        logger.debug("Listed catalog", count=len(games))
        return games

    def append_sample(self, game_id: int, timestamp_ms: int, ccu: int) -> None:
        """Append one CCU reading

        Raises:
            StorageError: if the insert fails
        """
        self.execute(
            """
            INSERT INTO samples (game_id, timestamp_ms, ccu)
            VALUES (%(game_id)s, %(timestamp_ms)s, %(ccu)s)
            """,
            {"game_id": game_id, "timestamp_ms": timestamp_ms, "ccu": ccu},
        )

    def find_url_owner(self, reference_url: str, external_id: str) -> str | None:
        """External id of another game already using this reference URL"""
        row = self.fetch_one(
            """
            SELECT external_id FROM games
            WHERE reference_url = %(reference_url)s AND external_id <> %(external_id)s
            LIMIT 1
            """,
            {"reference_url": reference_url, "external_id": external_id},
        )
        return row["external_id"] if row else None

    def upsert_game(self, external_id: str, title: str, reference_url: str) -> UpsertResult:
        """Insert a listing or refresh its title/URL

        The external id is the only de-duplication key. A reference URL that
        already belongs to another external id is logged, never merged.
        """
        owner = self.find_url_owner(reference_url, external_id)
        if owner is not None:
            logger.warning(
                "Reference URL already used by another game",
                external_id=external_id,
                reference_url=reference_url,
                other_external_id=owner,
            )

        # xmax = 0 only for freshly inserted rows
        row = self.fetch_one(
            """
            INSERT INTO games (external_id, title, reference_url)
            VALUES (%(external_id)s, %(title)s, %(reference_url)s)
            ON CONFLICT (external_id) DO UPDATE SET
                title = EXCLUDED.title,
                reference_url = EXCLUDED.reference_url,
                updated_at = NOW()
            RETURNING id, (xmax = 0) AS inserted
            """,
            {"external_id": external_id, "title": title, "reference_url": reference_url},
        )
        if row is None:
            raise StorageError(f"Upsert returned no row for game {external_id}")

        return UpsertResult(
            game_id=row["id"],
            is_new=bool(row["inserted"]),
            url_collision=owner is not None,
        )

    def get_stats(self) -> dict[str, int]:
        """Row counts for the catalog tables"""
        row = self.fetch_one(
            """
            SELECT
                (SELECT COUNT(*) FROM games) AS games,
                (SELECT COUNT(*) FROM samples) AS samples
            """
        )
        return {key: int(value) for key, value in (row or {}).items()}
