"""Engine documental (MongoDB, cliente async de pymongo).

Un documento por StorageRecord con ``_id`` = id del record. Índices
(idempotentes, en ``connect()``):

- idx_source_id, idx_timestamp, idx_stored_at, idx_source_timestamp
- idx_text_search: índice de texto wildcard para ``search``
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ASCENDING, DESCENDING, TEXT, AsyncMongoClient, IndexModel

from ...core.domain import StorageRecord
from ...core.domain.storage_record import isoformat, parse_timestamp
from ..base import BaseStorageAdapter, QueryCriteria

logger = logging.getLogger(__name__)

SORT_RECENT_FIRST = [("timestamp", DESCENDING), ("storedAt", DESCENDING)]

INDEXES = [
    IndexModel([("sourceId", ASCENDING)], name="idx_source_id"),
    IndexModel([("timestamp", DESCENDING)], name="idx_timestamp"),
    IndexModel([("storedAt", DESCENDING)], name="idx_stored_at"),
    IndexModel([("sourceId", ASCENDING), ("timestamp", DESCENDING)], name="idx_source_timestamp"),
    IndexModel([("$**", TEXT)], name="idx_text_search"),
]


def to_document(record: StorageRecord) -> Dict[str, Any]:
    return {
        "_id": record.id,
        "sourceId": record.source_id,
        "sourceType": record.source_type,
        "timestamp": record.timestamp,
        "data": record.data,
        "metadata": record.metadata,
        "quality": record.quality,
        "processing": record.processing,
        "storedAt": record.stored_at,
    }


def from_document(doc: Mapping[str, Any]) -> StorageRecord:
    return StorageRecord(
        id=str(doc["_id"]),
        source_id=doc.get("sourceId"),
        source_type=doc.get("sourceType"),
        timestamp=parse_timestamp(doc.get("timestamp")),
        data=doc.get("data"),
        metadata=dict(doc.get("metadata") or {}),
        quality=dict(doc.get("quality") or {}),
        processing=dict(doc.get("processing") or {}),
        stored_at=parse_timestamp(doc.get("storedAt")),
    )


def build_filter(criteria: QueryCriteria) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if criteria.source_id is not None:
        query["sourceId"] = criteria.source_id
    window: Dict[str, Any] = {}
    if criteria.start_time is not None:
        window["$gte"] = criteria.start_time
    if criteria.end_time is not None:
        window["$lte"] = criteria.end_time
    if window:
        query["timestamp"] = window
    return query


class MongoDBStorageAdapter(BaseStorageAdapter):
    """Args:
    config: dict o ``MongoStorageConfig``.
    client: ``AsyncMongoClient`` ya creado (tests); si se pasa, el adapter
        no lo cierra.
    """

    storage_type = "mongodb"

    def __init__(self, config: Any = None, client: Optional[Any] = None):
        super().__init__(config)
        self._client = client
        self._owns_client = client is None
        self.collection = None

    async def _initialize(self) -> None:
        cfg = self.config
        if self._client is None:
            options = dict(cfg.options)
            if cfg.user:
                options.setdefault("username", cfg.user)
                options.setdefault("password", cfg.password)
            self._client = AsyncMongoClient(
                cfg.url or cfg.host,
                port=cfg.port if not cfg.url else None,
                tz_aware=True,
                maxPoolSize=cfg.max_connections,
                serverSelectionTimeoutMS=cfg.connection_timeout,
                socketTimeoutMS=cfg.socket_timeout,
                **options,
            )
        self.collection = self._client[cfg.database][cfg.collection]

    async def _connect(self) -> None:
        await self._client.admin.command("ping")
        await self.collection.create_indexes(INDEXES)
        logger.info(
            "[STORAGE:mongodb] Connected, collection=%s.%s",
            self.config.database,
            self.config.collection,
        )

    async def _disconnect(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()

    async def _store(self, record: StorageRecord) -> None:
        doc = to_document(record)
        await self.collection.replace_one({"_id": record.id}, doc, upsert=True)

    async def _query(self, criteria: QueryCriteria) -> List[StorageRecord]:
        cursor = self.collection.find(build_filter(criteria)).sort(SORT_RECENT_FIRST)
        if criteria.limit is not None:
            cursor = cursor.limit(criteria.limit)
        return [from_document(doc) async for doc in cursor]

    async def _search(self, text: str, limit: int) -> List[StorageRecord]:
        query = {
            "$or": [
                {"sourceId": {"$regex": re.escape(text), "$options": "i"}},
                {"$text": {"$search": text}},
            ]
        }
        cursor = self.collection.find(query).sort(SORT_RECENT_FIRST).limit(limit)
        return [from_document(doc) async for doc in cursor]

    async def _clear(self) -> int:
        result = await self.collection.delete_many({})
        return int(result.deleted_count)

    async def _storage_stats(self) -> Dict[str, Any]:
        total = await self.collection.count_documents({})
        sources = await self.collection.distinct("sourceId")
        oldest = await self.collection.find_one({}, sort=[("timestamp", ASCENDING)])
        newest = await self.collection.find_one({}, sort=[("timestamp", DESCENDING)])
        return {
            "collection": self.config.collection,
            "total_records": int(total),
            "unique_sources": len([s for s in sources if s is not None]),
            "oldest_record": isoformat(parse_timestamp(oldest["timestamp"])) if oldest else None,
            "newest_record": isoformat(parse_timestamp(newest["timestamp"])) if newest else None,
        }

    async def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Pipeline de agregación nativo. Devuelve los documentos tal cual."""
        self._require_connected("aggregate")

        async def run() -> List[Dict[str, Any]]:
            cursor = await self.collection.aggregate(pipeline)
            return [doc async for doc in cursor]

        results = await self._run("aggregate", run())
        self.on_read()
        return results
