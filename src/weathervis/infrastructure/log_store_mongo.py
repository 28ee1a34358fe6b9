from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .log_store import CHAT_TIPS, FORECAST_LOGS, WEATHER_LOGS, PersistenceWriteError, _check_collection


LOG = logging.getLogger("weathervis.store")

DEFAULT_DB_NAME = "hos08"
DEFAULT_TTL_DAYS = 30


def ttl_seconds_from_env() -> int:
    raw = os.getenv("LOG_TTL_DAYS")
    days = float(raw) if raw else DEFAULT_TTL_DAYS
    return int(days * 24 * 3600)


class MongoLogStore:
    """Mongo-backed request log with TTL-indexed collections.

    The client is created on first use and reused for every later write; index
    creation runs once under a lock so concurrent first writers do not race.
    """

    def __init__(
        self,
        url: str,
        db_name: Optional[str] = None,
        *,
        ttl_seconds: Optional[int] = None,
        client: Optional[AsyncIOMotorClient] = None,
    ) -> None:
        self._url = url
        self._db_name = db_name or os.getenv("MONGO_DB_NAME") or DEFAULT_DB_NAME
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else ttl_seconds_from_env()
        self._client = client
        self._db: Optional[AsyncIOMotorDatabase] = None
        self._lock = asyncio.Lock()

    async def _database(self) -> AsyncIOMotorDatabase:
        if self._db is not None:
            return self._db
        async with self._lock:
            if self._db is not None:
                return self._db
            if self._client is None:
                self._client = AsyncIOMotorClient(self._url, maxPoolSize=10)
            db = self._client[self._db_name]
            await self._ensure_indexes(db)
            self._db = db
            LOG.info("mongo_log_store_connected", extra={"db": self._db_name, "ttl_s": self._ttl_seconds})
            return db

    async def _ensure_indexes(self, db: AsyncIOMotorDatabase) -> None:
        ttl = self._ttl_seconds
        await asyncio.gather(
            db[WEATHER_LOGS].create_index([("createdAt", ASCENDING)], expireAfterSeconds=ttl),
            db[WEATHER_LOGS].create_index([("request.city", ASCENDING), ("createdAt", DESCENDING)]),
            db[WEATHER_LOGS].create_index(
                [("request.lat", ASCENDING), ("request.lon", ASCENDING), ("createdAt", DESCENDING)]
            ),
            db[FORECAST_LOGS].create_index([("createdAt", ASCENDING)], expireAfterSeconds=ttl),
            db[FORECAST_LOGS].create_index([("request.city", ASCENDING), ("createdAt", DESCENDING)]),
            db[FORECAST_LOGS].create_index(
                [("request.lat", ASCENDING), ("request.lon", ASCENDING), ("createdAt", DESCENDING)]
            ),
            db[CHAT_TIPS].create_index([("createdAt", ASCENDING)], expireAfterSeconds=ttl),
            db[CHAT_TIPS].create_index([("request.place", ASCENDING), ("createdAt", DESCENDING)]),
        )

    async def insert(self, collection: str, record: Dict[str, Any]) -> None:
        _check_collection(collection)
        try:
            db = await self._database()
            await db[collection].insert_one(dict(record))
        except PyMongoError as exc:
            raise PersistenceWriteError(f"insert into {collection} failed: {exc}") from exc

    async def list_recent(self, collection: str, limit: int = 20) -> List[Dict[str, Any]]:
        _check_collection(collection)
        if limit <= 0:
            return []
        db = await self._database()
        cursor = db[collection].find({}, {"_id": 0}).sort("createdAt", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
