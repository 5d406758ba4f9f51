"""
Game catalog and CCU sample store.
"""

from .database import CatalogDatabase
from .models import CatalogConfig, GameRef, SyncStats, UpsertResult

__all__ = ["CatalogDatabase", "CatalogConfig", "GameRef", "SyncStats", "UpsertResult"]
