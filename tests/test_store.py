"""
Tests for the document stores.
"""

import json
from datetime import datetime

import pytest

from parish_ledger.config import Settings
from parish_ledger.store import (
    DocumentNotFoundError,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    StoreError,
    WriteOp,
    create_store,
)

from conftest import FIXED_NOW, fixed_clock


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore(
        initial={"expenses": {"e1": {"amount": 10.0}, "e2": {"amount": 30.0}}},
        clock=fixed_clock,
    )


class TestInMemoryDocumentStore:

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, memory_store):
        doc = await memory_store.get_one("expenses", "e1")
        doc["amount"] = 99.0
        assert (await memory_store.get_one("expenses", "e1"))["amount"] == 10.0

    @pytest.mark.asyncio
    async def test_ordering(self, memory_store):
        docs = await memory_store.get_many("expenses", order_by="amount")
        assert [d["id"] for d in docs] == ["e2", "e1"]
        docs = await memory_store.get_many("expenses", order_by="amount", descending=False)
        assert [d["id"] for d in docs] == ["e1", "e2"]

    @pytest.mark.asyncio
    async def test_update_stamps_and_requires_document(self, memory_store):
        await memory_store.update("expenses", "e1", {"category": "Gas"})
        doc = await memory_store.get_one("expenses", "e1")
        assert doc["category"] == "Gas"
        assert doc["updatedAt"] == FIXED_NOW

        with pytest.raises(DocumentNotFoundError):
            await memory_store.update("expenses", "missing", {"category": "Gas"})

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self, memory_store):
        batch = memory_store.batch()
        batch.update("expenses", "e1", {"isReconciled": True})
        batch.update("expenses", "missing", {"isReconciled": True})

        with pytest.raises(DocumentNotFoundError):
            await batch.commit()

        assert "isReconciled" not in await memory_store.get_one("expenses", "e1")

    @pytest.mark.asyncio
    async def test_batch_commits_once(self, memory_store):
        batch = memory_store.batch().delete("expenses", "e2")
        await batch.commit()

        assert await memory_store.get_one("expenses", "e2") is None
        with pytest.raises(StoreError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_unknown_write_kind(self, memory_store):
        with pytest.raises(StoreError):
            await memory_store.commit_batch([WriteOp("upsert", "expenses", "e1")])


class TestJsonFileDocumentStore:

    @pytest.mark.asyncio
    async def test_survives_reload(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileDocumentStore(path, clock=fixed_clock)
        await store.set_one("bankStatements", "s1", {"amount": -5.0, "reconciledDate": datetime(2024, 3, 1)})

        reloaded = JsonFileDocumentStore(path)
        doc = await reloaded.get_one("bankStatements", "s1")

        assert doc["amount"] == -5.0
        assert doc["reconciledDate"] == "2024-03-01T00:00:00"
        assert json.loads(path.read_text(encoding="utf-8"))["bankStatements"]["s1"]["amount"] == -5.0


class TestCreateStore:

    def test_backends(self, tmp_path):
        assert isinstance(
            create_store(Settings(_env_file=None, store_backend="json", data_dir=tmp_path)),
            JsonFileDocumentStore,
        )
        assert type(create_store(Settings(_env_file=None, store_backend="memory"))) is InMemoryDocumentStore
        with pytest.raises(ValueError):
            create_store(Settings(_env_file=None, store_backend="firestore"))
