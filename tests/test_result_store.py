import pytest

from src.models.session import AnalysisSession
from src.services.result_store import SessionResultStore
from tests.fakes import PLACE_URL, make_review


class FakeCollection:
    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.indexes: list[tuple] = []

    async def update_one(self, query: dict, update: dict, upsert: bool = False) -> None:
        current = self.documents.get(query["id"])
        if current is None:
            if not upsert:
                return
            current = dict(update.get("$setOnInsert", {}))
        current.update(update["$set"])
        self.documents[query["id"]] = current

    async def find_one(self, query: dict, projection: dict | None = None) -> dict | None:
        return self.documents.get(query["id"])

    async def create_index(self, key: str, unique: bool = False) -> str:
        self.indexes.append((key, unique))
        return key


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())


@pytest.mark.asyncio
async def test_save_upserts_session_without_working_data() -> None:
    database = FakeDatabase()
    store = SessionResultStore(database)
    session = AnalysisSession(id="session_1", url=PLACE_URL, status="complete", reviews=[make_review("a", 5, "Great")])

    await store.save(session)
    await store.save(session)
    stored = await store.load("session_1")

    assert stored["status"] == "complete"
    assert stored["url"] == PLACE_URL
    assert "reviews" not in stored
    assert "stored_at" in stored
    assert len(database["analysis_sessions"].documents) == 1


@pytest.mark.asyncio
async def test_indexes_cover_id_and_creation_time() -> None:
    database = FakeDatabase()

    await SessionResultStore(database).ensure_indexes()

    assert database["analysis_sessions"].indexes == [("id", True), ("created_at", False)]


@pytest.mark.asyncio
async def test_missing_session_loads_as_none() -> None:
    assert await SessionResultStore(FakeDatabase()).load("session_missing") is None
