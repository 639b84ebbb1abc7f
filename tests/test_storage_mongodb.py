"""Tests del engine MongoDB con cliente mockeado.

Ejecutar:
    pytest tests/test_storage_mongodb.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from pymongo import DESCENDING

from conftest import BASE_TIME, make_payload
from telemetry_normalizer.core.domain import StorageRecord
from telemetry_normalizer.storage import StorageConfigError, StorageConnectivityError
from telemetry_normalizer.storage.adapters import MongoDBStorageAdapter
from telemetry_normalizer.storage.adapters.mongodb import INDEXES, to_document


# =============================================================================
# FIXTURES
# =============================================================================

def _doc(index, **overrides):
    return to_document(StorageRecord.create(make_payload(index, **overrides)))


def _cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__aiter__.return_value = docs
    return cursor


@pytest.fixture
def collection():
    mock = MagicMock()
    mock.create_indexes = AsyncMock(return_value=[])
    mock.replace_one = AsyncMock()
    mock.delete_many = AsyncMock(return_value=MagicMock(deleted_count=3))
    mock.count_documents = AsyncMock(return_value=2)
    mock.distinct = AsyncMock(return_value=["sensor-1", None])
    mock.find_one = AsyncMock(side_effect=[_doc(0), _doc(5)])
    mock.find = MagicMock(return_value=_cursor([]))
    return mock


@pytest.fixture
def client(collection):
    mock = MagicMock()
    mock.admin.command = AsyncMock(return_value={"ok": 1})
    mock.__getitem__.return_value.__getitem__.return_value = collection
    mock.close = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def adapter(client):
    instance = MongoDBStorageAdapter({"host": "localhost", "database": "telemetry"}, client=client)
    await instance.connect()
    return instance


# =============================================================================
# TESTS
# =============================================================================

class TestBootstrap:

    @pytest.mark.asyncio
    async def test_connect_pings_and_creates_indexes(self, adapter, client, collection):
        client.admin.command.assert_awaited_once_with("ping")
        collection.create_indexes.assert_awaited_once_with(INDEXES)
        names = {index.document["name"] for index in INDEXES}
        assert names == {
            "idx_source_id",
            "idx_timestamp",
            "idx_stored_at",
            "idx_source_timestamp",
            "idx_text_search",
        }

    @pytest.mark.asyncio
    async def test_requires_url_or_host(self, client):
        with pytest.raises(StorageConfigError):
            await MongoDBStorageAdapter({"database": "telemetry"}, client=client).initialize()

    @pytest.mark.asyncio
    async def test_server_unreachable(self, client):
        client.admin.command.side_effect = TimeoutError("server selection timeout")
        adapter = MongoDBStorageAdapter({"host": "localhost", "database": "telemetry"}, client=client)

        with pytest.raises(StorageConnectivityError):
            await adapter.connect()


class TestOperations:

    @pytest.mark.asyncio
    async def test_store_upserts_by_record_id(self, adapter, collection):
        record_id = await adapter.store(make_payload(1))

        collection.replace_one.assert_awaited_once()
        selector, document = collection.replace_one.await_args.args
        assert selector == {"_id": record_id}
        assert document["sourceId"] == "sensor-1"
        assert collection.replace_one.await_args.kwargs == {"upsert": True}

    @pytest.mark.asyncio
    async def test_query_filter_sort_and_limit(self, adapter, collection):
        cursor = _cursor([_doc(2), _doc(1)])
        collection.find.return_value = cursor

        records = await adapter.query({"sourceId": "sensor-1", "startTime": BASE_TIME, "limit": 2})

        query = collection.find.call_args.args[0]
        assert query == {"sourceId": "sensor-1", "timestamp": {"$gte": BASE_TIME}}
        cursor.sort.assert_called_once_with([("timestamp", DESCENDING), ("storedAt", DESCENDING)])
        cursor.limit.assert_called_once_with(2)
        assert [r.id for r in records] == ["rec-2", "rec-1"]

    @pytest.mark.asyncio
    async def test_search_combines_regex_and_text_and_filters(self, adapter, collection):
        collection.find.return_value = _cursor(
            [_doc(1, data={"alarm": "overheat"}), _doc(2, data={"alarm": "heat"})]
        )

        results = await adapter.search("overheat")

        query = collection.find.call_args.args[0]
        assert query["$or"][0] == {"sourceId": {"$regex": "overheat", "$options": "i"}}
        assert query["$or"][1] == {"$text": {"$search": "overheat"}}
        assert [r.id for r in results] == ["rec-1"]

    @pytest.mark.asyncio
    async def test_search_escapes_regex(self, adapter, collection):
        await adapter.search("a.b*")
        query = collection.find.call_args.args[0]
        assert query["$or"][0]["sourceId"]["$regex"] == r"a\.b\*"

    @pytest.mark.asyncio
    async def test_clear_returns_deleted_count(self, adapter, collection):
        assert await adapter.clear() == 3
        collection.delete_many.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_stats(self, adapter):
        storage = (await adapter.get_stats())["storage"]
        assert storage["total_records"] == 2
        assert storage["unique_sources"] == 1
        assert storage["oldest_record"] == "2024-03-01T12:00:00Z"
        assert storage["newest_record"] == "2024-03-01T12:05:00Z"

    @pytest.mark.asyncio
    async def test_aggregate(self, adapter, collection):
        pipeline = [{"$group": {"_id": "$sourceId", "n": {"$sum": 1}}}]
        collection.aggregate = AsyncMock(return_value=_cursor([{"_id": "sensor-1", "n": 2}]))

        result = await adapter.aggregate(pipeline)

        collection.aggregate.assert_awaited_once_with(pipeline)
        assert result == [{"_id": "sensor-1", "n": 2}]
