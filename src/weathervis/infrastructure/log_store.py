from __future__ import annotations

from copy import deepcopy
from threading import RLock
from typing import Any, Dict, List, Protocol
import logging
import os


LOG = logging.getLogger("weathervis.store")

WEATHER_LOGS = "weather_logs"
FORECAST_LOGS = "forecast_logs"
CHAT_TIPS = "chat_tips"
COLLECTIONS = (WEATHER_LOGS, FORECAST_LOGS, CHAT_TIPS)


class PersistenceWriteError(Exception):
    """A log record could not be written to the backing store."""


class LogStore(Protocol):
    async def insert(self, collection: str, record: Dict[str, Any]) -> None: ...

    async def list_recent(self, collection: str, limit: int = 20) -> List[Dict[str, Any]]: ...

    async def close(self) -> None: ...


class InMemoryLogStore:
    """Process-local log store used for development and tests."""

    def __init__(self, max_records: int = 500) -> None:
        self._records: Dict[str, List[Dict[str, Any]]] = {name: [] for name in COLLECTIONS}
        self._max_records = max_records
        self._lock = RLock()

    async def insert(self, collection: str, record: Dict[str, Any]) -> None:
        _check_collection(collection)
        with self._lock:
            bucket = self._records[collection]
            bucket.append(deepcopy(record))
            if len(bucket) > self._max_records:
                del bucket[0 : len(bucket) - self._max_records]

    async def list_recent(self, collection: str, limit: int = 20) -> List[Dict[str, Any]]:
        _check_collection(collection)
        if limit <= 0:
            return []
        with self._lock:
            recent = self._records[collection][-limit:]
            return [deepcopy(r) for r in reversed(recent)]

    async def close(self) -> None:
        return None


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise KeyError(f"Unknown log collection: {collection}")


def build_log_store() -> LogStore:
    """Construct the log store selected by the environment.

    ``DB_MODE=mongo`` or ``WEATHERVIS_LOG_STORE_IMPL=mongo`` selects the Mongo
    store; anything else keeps records in memory.
    """

    db_mode = (os.getenv("DB_MODE") or "").lower()
    impl = (os.getenv("WEATHERVIS_LOG_STORE_IMPL") or "memory").lower()
    if db_mode == "mongo" or impl == "mongo":
        from .log_store_mongo import MongoLogStore

        url = os.getenv("MONGO_URL") or os.getenv("ATLAS_URI")
        if not url:
            raise RuntimeError("Missing MONGO_URL (or ATLAS_URI) for the mongo log store")
        LOG.info("log_store_selected", extra={"impl": "mongo"})
        return MongoLogStore(url)
    LOG.info("log_store_selected", extra={"impl": "memory"})
    return InMemoryLogStore()
