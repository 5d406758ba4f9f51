"""
Data models and configuration for the game catalog.
"""

from dataclasses import dataclass

from src.core.database import PostgresConfig


@dataclass(frozen=True)
class GameRef:
    """A game tracked by the sampler"""

    id: int
    external_id: str  # catalog id on the source site, the natural key
    title: str
    reference_url: str

    @classmethod
    def from_row(cls, row: dict) -> "GameRef":
        return cls(
            id=row["id"],
            external_id=str(row["external_id"]),
            title=row["title"],
            reference_url=row["reference_url"],
        )


@dataclass
class UpsertResult:
    """Outcome of upserting one catalog listing"""

    game_id: int
    is_new: bool
    url_collision: bool = False


@dataclass
class SyncStats:
    """Counters for a catalog sync"""

    total: int = 0
    new_games: int = 0
    updated_games: int = 0
    url_collisions: int = 0
    invalid: int = 0
    errors: int = 0


@dataclass
class CatalogConfig(PostgresConfig):
    """Configuration for catalog maintenance"""

    csv_path: str | None = None
