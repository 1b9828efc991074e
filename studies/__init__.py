from __future__ import annotations

import logging

from config.settings import Settings, settings
from studies.base import TradeStudyStore
from studies.database import SQLiteTradeStudyStore
from studies.memory import InMemoryTradeStudyStore, demo_studies

logger = logging.getLogger(__name__)


def create_store(cfg: Settings = settings) -> TradeStudyStore:
    """Pick the store at startup: SQLite when database_path is set, else seeded in-memory."""
    if cfg.database_path:
        logger.info(f"Using SQLite trade study store at {cfg.database_path}")
        return SQLiteTradeStudyStore(cfg.database_path)
    logger.info("No database_path configured; using in-memory trade study store with demo data")
    return InMemoryTradeStudyStore.with_demo_data(cfg.default_owner_id)


__all__ = [
    "TradeStudyStore",
    "InMemoryTradeStudyStore",
    "SQLiteTradeStudyStore",
    "create_store",
    "demo_studies",
]
