"""
Tests for the trade study stores. Every behavioural test runs against both
the in-memory and the SQLite implementation.
"""

from __future__ import annotations

import pytest

from agents.base import AttachmentType, TradeStudyNotFoundError, TradeStudyStatus
from config.settings import Settings
from studies import InMemoryTradeStudyStore, SQLiteTradeStudyStore, create_store
from studies.base import clean_update_fields


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryTradeStudyStore()
    else:
        store = SQLiteTradeStudyStore(tmp_path / "studies.db")
        yield store
        store.close()


class TestStoreContract:
    async def test_create_and_load(self, any_store):
        created = await any_store.create("u1", "Pick a broker", summary="Kafka vs NATS", data={"k": [1, 2]})
        loaded = await any_store.load_by_id(created.id)

        assert loaded.title == "Pick a broker"
        assert loaded.summary == "Kafka vs NATS"
        assert loaded.status == TradeStudyStatus.DRAFT
        assert loaded.data == {"k": [1, 2]}
        assert loaded.attachments == []

    async def test_unknown_id(self, any_store):
        assert await any_store.load_by_id("missing") is None
        assert await any_store.update("missing", title="x") is None

    async def test_partial_update(self, any_store):
        created = await any_store.create("u1", "Original", summary="s", data={"a": 1})
        updated = await any_store.update(created.id, status="in_review")

        assert updated.status == TradeStudyStatus.IN_REVIEW
        assert updated.title == "Original"
        assert updated.data == {"a": 1}
        assert updated.updated_at >= created.updated_at

    async def test_data_replaced_wholesale(self, any_store):
        created = await any_store.create("u1", "T", data={"a": 1, "b": 2})
        updated = await any_store.update(created.id, data={"c": 3})
        assert updated.data == {"c": 3}

    async def test_unknown_field_rejected(self, any_store):
        created = await any_store.create("u1", "T")
        with pytest.raises(ValueError, match="owner_id"):
            await any_store.update(created.id, owner_id="someone-else")

    async def test_list_by_owner(self, any_store):
        await any_store.create("u1", "One")
        await any_store.create("u2", "Two")
        assert [s.title for s in await any_store.list_studies(owner_id="u2")] == ["Two"]
        assert len(await any_store.list_studies()) == 2

    async def test_attachments(self, any_store):
        created = await any_store.create("u1", "T")
        att = await any_store.create_attachment(created.id, "file-9", AttachmentType.SHEET, "Scoring")

        assert att.id.startswith("att-")
        loaded = await any_store.load_by_id(created.id)
        assert [(a.file_id, a.type, a.title) for a in loaded.attachments] == [
            ("file-9", AttachmentType.SHEET, "Scoring"),
        ]

    async def test_attachment_unknown_study(self, any_store):
        with pytest.raises(TradeStudyNotFoundError, match="Trade study missing not found"):
            await any_store.create_attachment("missing", "f", AttachmentType.DOC)


class TestInMemoryStore:
    async def test_demo_data(self):
        store = InMemoryTradeStudyStore.with_demo_data("owner-7")
        ids = {s.id for s in await store.list_studies(owner_id="owner-7")}
        assert ids == {"airflow-vs-dbt", "vector-db"}
        airflow = await store.load_by_id("airflow-vs-dbt")
        assert [a.id for a in airflow.attachments] == ["doc-1"]

    async def test_returns_copies(self):
        store = InMemoryTradeStudyStore.with_demo_data()
        study = await store.load_by_id("vector-db")
        study.data["notes"] = "mutated"
        assert (await store.load_by_id("vector-db")).data["notes"] == "Awaiting benchmarks"

    async def test_instances_isolated(self):
        a = InMemoryTradeStudyStore.with_demo_data()
        b = InMemoryTradeStudyStore.with_demo_data()
        await a.update("vector-db", title="Changed")
        assert (await b.load_by_id("vector-db")).title == "Vector database for AI agent"


class TestSQLiteStore:
    async def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteTradeStudyStore(path)
        created = await first.create("u1", "Durable", data={"winner": "pgvector"})
        first.close()

        second = SQLiteTradeStudyStore(path)
        assert (await second.load_by_id(created.id)).data == {"winner": "pgvector"}
        second.close()

    async def test_in_memory_database(self):
        store = SQLiteTradeStudyStore(":memory:")
        created = await store.create("u1", "Ephemeral")
        assert (await store.load_by_id(created.id)).title == "Ephemeral"
        store.close()


class TestCreateStore:
    def test_defaults_to_demo_memory_store(self):
        store = create_store(Settings(_env_file=None, database_path=None))
        assert isinstance(store, InMemoryTradeStudyStore)

    def test_sqlite_when_path_configured(self, tmp_path):
        store = create_store(Settings(_env_file=None, database_path=str(tmp_path / "x.db")))
        assert isinstance(store, SQLiteTradeStudyStore)
        store.close()


class TestCleanUpdateFields:
    def test_none_title_and_data_dropped(self):
        assert clean_update_fields({"title": None, "data": None, "summary": None}) == {"summary": None}

    def test_status_coerced(self):
        assert clean_update_fields({"status": "published"}) == {"status": TradeStudyStatus.PUBLISHED}
