"""
Catalog synchronisation from tabular listings.
"""

from collections.abc import Iterable

import pandas as pd
import structlog

from src.core.errors import StorageError

from .database import CatalogDatabase
from .models import SyncStats

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ["external_id", "title", "reference_url"]


def load_listings_csv(path: str) -> pd.DataFrame:
    """Load catalog listings from a CSV file

    Args:
        path: CSV with at least external_id, title and reference_url columns

    Returns:
        DataFrame with the required columns as stripped strings

    Raises:
        ValueError: If a required column is missing
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    if "url" in df.columns and "reference_url" not in df.columns:
        df = df.rename(columns={"url": "reference_url"})

    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Listings file missing required columns: {sorted(missing)}")

    df = df[REQUIRED_COLUMNS].apply(lambda col: col.str.strip())
    logger.info("Loaded catalog listings", path=path, rows=len(df))
    return df


def sync_games(db: CatalogDatabase, listings: Iterable[dict]) -> SyncStats:
    """Upsert every listing, counting outcomes

    A listing with an empty field is skipped as invalid; a storage failure on
    one listing is counted and the sync moves on.
    """
    stats = SyncStats()

    for listing in listings:
        stats.total += 1
        external_id = str(listing.get("external_id") or "").strip()
        title = str(listing.get("title") or "").strip()
        reference_url = str(listing.get("reference_url") or "").strip()

        if not (external_id and title and reference_url):
            stats.invalid += 1
            logger.debug("Skipping invalid listing", listing=listing)
            continue

        try:
            result = db.upsert_game(external_id, title, reference_url)
        except StorageError as e:
            stats.errors += 1
            logger.warning("Failed to upsert game", external_id=external_id, error=str(e))
            continue

        if result.is_new:
            stats.new_games += 1
        else:
            stats.updated_games += 1
        if result.url_collision:
            stats.url_collisions += 1

    logger.info(
        "Catalog sync completed",
        total=stats.total,
        new_games=stats.new_games,
        updated_games=stats.updated_games,
        url_collisions=stats.url_collisions,
        invalid=stats.invalid,
        errors=stats.errors,
    )
    return stats
