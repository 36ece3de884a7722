from __future__ import annotations

import logging
import os
from functools import lru_cache
from urllib.parse import urlparse

from flowsynth.storage.base import RowStore
from flowsynth.storage.memory import InMemoryStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_store() -> RowStore:
    backend = (os.getenv("FLOWSYNTH_STORE") or "memory").strip().lower()
    if backend == "postgres":
        from flowsynth.storage.postgres import PostgresStore, _pg_url

        host = urlparse(_pg_url()).hostname or "unknown"
        logger.info("Using Postgres row store", extra={"host": host})
        return PostgresStore()
    if backend != "memory":
        raise RuntimeError(f"Unknown FLOWSYNTH_STORE '{backend}' (expected 'postgres' or 'memory')")
    logger.info("Using in-memory row store")
    return InMemoryStore()
