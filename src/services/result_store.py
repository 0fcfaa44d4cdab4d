from __future__ import annotations

import logging
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase

from src.database import get_database
from src.models.session import AnalysisSession

LOGGER = logging.getLogger(__name__)


class SessionResultStore:
    """Persists finished sessions to MongoDB, keyed by session id."""

    _SESSIONS_COLLECTION = "analysis_sessions"

    def __init__(self, database: AsyncIOMotorDatabase | None = None) -> None:
        self._database = database

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self._database if self._database is not None else get_database()

    async def save(self, session: AnalysisSession) -> None:
        now = datetime.now(timezone.utc)
        document = session.model_dump(mode="python", exclude={"reviews", "sample", "sentiment", "fake_analysis"})
        document["updated_at"] = now
        await self.database[self._SESSIONS_COLLECTION].update_one(
            {"id": session.id},
            {"$set": document, "$setOnInsert": {"stored_at": now}},
            upsert=True,
        )

    async def load(self, session_id: str) -> dict | None:
        return await self.database[self._SESSIONS_COLLECTION].find_one({"id": session_id}, {"_id": 0})

    async def ensure_indexes(self) -> None:
        collection = self.database[self._SESSIONS_COLLECTION]
        await collection.create_index("id", unique=True)
        await collection.create_index("created_at")
