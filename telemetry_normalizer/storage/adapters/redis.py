"""Engine clave-valor (Redis, ``redis.asyncio``).

Claves (``prefix`` = ``key_prefix`` de la config):

- ``{prefix}record:{id}``      JSON del StorageRecord (con TTL si ``ttl``)
- ``{prefix}data``             sorted set principal, score = timestamp en ms
- ``{prefix}source:{source}``  sorted set por fuente, mismo score

Cada write es UN pipeline MULTI/EXEC: SET/SETEX + 2×ZADD + 2×ZREMRANGEBYRANK.
Los ids recortados dejan de ser alcanzables desde ambos índices: las lecturas
por fuente validan cada id contra ``{prefix}data`` (ZMSCORE) y podan el
índice por fuente. El cuerpo expira por TTL o se borra con ``clear``. Ids
cuyo cuerpo ya expiró se ignoran al leer.

``clear`` borra solo ``{prefix}data``, ``{prefix}record:*`` y
``{prefix}source:*`` (prefijo escapado para SCAN).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from redis import asyncio as aioredis

from ...core.domain import StorageRecord
from ...core.domain.storage_record import isoformat, parse_timestamp
from ..base import BaseStorageAdapter, QueryCriteria

logger = logging.getLogger(__name__)

SCAN_BATCH = 500

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def glob_escape(value: str) -> str:
    """Escapa metacaracteres de patrón de SCAN (``*?[]\\``)."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def score_of(record: StorageRecord) -> int:
    return int(record.timestamp.timestamp() * 1000)


class RedisStorageAdapter(BaseStorageAdapter):
    """Args:
    config: dict o ``RedisStorageConfig``.
    client: cliente ``redis.asyncio`` ya creado (tests); si se pasa, el
        adapter no lo cierra.
    """

    storage_type = "redis"

    def __init__(self, config: Any = None, client: Optional[Any] = None):
        super().__init__(config)
        self._client = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Claves
    # ------------------------------------------------------------------

    @property
    def prefix(self) -> str:
        return self.config.key_prefix

    @property
    def data_key(self) -> str:
        return f"{self.prefix}data"

    def record_key(self, record_id: str) -> str:
        return f"{self.prefix}record:{record_id}"

    def source_key(self, source_id: str) -> str:
        return f"{self.prefix}source:{source_id}"

    # ------------------------------------------------------------------
    # Conexión
    # ------------------------------------------------------------------

    async def _initialize(self) -> None:
        if self._client is not None:
            return
        cfg = self.config
        common = dict(
            password=cfg.password,
            decode_responses=True,
            socket_connect_timeout=cfg.connect_timeout / 1000,
            socket_timeout=cfg.command_timeout / 1000,
            **cfg.options,
        )
        if cfg.url:
            self._client = aioredis.from_url(cfg.url, **common)
        else:
            self._client = aioredis.Redis(host=cfg.host, port=cfg.port, db=cfg.database, **common)

    async def _connect(self) -> None:
        await self._client.ping()
        logger.info("[STORAGE:redis] Connected, prefix=%s max_entries=%d", self.prefix, self.config.max_entries)

    async def _disconnect(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def _store(self, record: StorageRecord) -> None:
        cfg = self.config
        body = record.to_json()
        score = score_of(record)
        trim_to = -(cfg.max_entries + 1)

        pipe = self._client.pipeline(transaction=True)
        if cfg.ttl:
            pipe.setex(self.record_key(record.id), cfg.ttl, body)
        else:
            pipe.set(self.record_key(record.id), body)
        pipe.zadd(self.data_key, {record.id: score})
        pipe.zremrangebyrank(self.data_key, 0, trim_to)
        if record.source_id is not None:
            source_key = self.source_key(record.source_id)
            pipe.zadd(source_key, {record.id: score})
            pipe.zremrangebyrank(source_key, 0, trim_to)
        await pipe.execute()

    async def _load(self, ids: List[str]) -> List[StorageRecord]:
        if not ids:
            return []
        bodies = await self._client.mget([self.record_key(i) for i in ids])
        records = []
        for record_id, body in zip(ids, bodies):
            if body is None:
                logger.debug("[STORAGE:redis] Record %s expired, skipping", record_id)
                continue
            records.append(StorageRecord.from_dict(json.loads(body)))
        return records

    async def _window(self, key: str, criteria: QueryCriteria, start: int, count: Optional[int]) -> List[str]:
        """Ids de ``key`` más nuevos primero, desde ``start``; ``count=None`` = todos."""
        if criteria.start_time is None and criteria.end_time is None:
            stop = start + count - 1 if count is not None else -1
            return list(await self._client.zrevrange(key, start, stop))
        high = int(criteria.end_time.timestamp() * 1000) if criteria.end_time else "+inf"
        low = int(criteria.start_time.timestamp() * 1000) if criteria.start_time else "-inf"
        if count is None:
            return list(await self._client.zrevrangebyscore(key, high, low))
        return list(await self._client.zrevrangebyscore(key, high, low, start=start, num=count))

    async def _live_ids(self, ids: List[str]) -> List[str]:
        """Filtra los ids que siguen en el índice principal."""
        if not ids:
            return []
        scores = await self._client.zmscore(self.data_key, ids)
        return [record_id for record_id, score in zip(ids, scores) if score is not None]

    async def _query(self, criteria: QueryCriteria) -> List[StorageRecord]:
        if criteria.source_id is None:
            ids = await self._window(self.data_key, criteria, 0, criteria.limit)
            return [r for r in await self._load(ids) if criteria.matches(r)]
        return await self._query_source(criteria)

    async def _query_source(self, criteria: QueryCriteria) -> List[StorageRecord]:
        """Lee el índice por fuente validando cada id contra el principal.

        Ids recortados del principal o re-escritos con otra fuente se
        quitan del índice por fuente al encontrarlos.
        """
        key = self.source_key(criteria.source_id)
        records: List[StorageRecord] = []
        start = 0
        while True:
            wanted = criteria.limit - len(records) if criteria.limit is not None else None
            ids = await self._window(key, criteria, start, wanted)
            if not ids:
                break
            live = await self._live_ids(ids)
            loaded = await self._load(live)
            moved = {r.id for r in loaded if r.source_id != criteria.source_id}
            live_ids = set(live)
            stale = [i for i in ids if i not in live_ids or i in moved]
            loaded = [r for r in loaded if criteria.matches(r)]
            if stale:
                await self._client.zrem(key, *stale)
                logger.debug("[STORAGE:redis] Pruned %d stale ids from %s", len(stale), key)
            records.extend(loaded)
            if wanted is None or len(ids) < wanted:
                break
            start += len(ids) - len(stale)
        return records

    async def _search(self, text: str, limit: int) -> List[StorageRecord]:
        # candidatos: todo el índice principal (acotado por max_entries)
        ids = await self._client.zrevrange(self.data_key, 0, -1)
        return await self._load(list(ids))

    def _pattern(self, namespace: str) -> str:
        return f"{glob_escape(self.prefix)}{namespace}:*"

    async def _delete_matching(self, pattern: str) -> int:
        deleted = 0
        batch: List[str] = []
        async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH):
            batch.append(key)
            if len(batch) >= SCAN_BATCH:
                deleted += await self._client.delete(*batch)
                batch = []
        if batch:
            deleted += await self._client.delete(*batch)
        return int(deleted)

    async def _clear(self) -> int:
        # solo las claves propias: otro adapter puede usar un prefijo que empiece igual
        removed = await self._delete_matching(self._pattern("record"))
        await self._delete_matching(self._pattern("source"))
        await self._client.delete(self.data_key)
        return removed

    async def _storage_stats(self) -> Dict[str, Any]:
        total = await self._client.zcard(self.data_key)
        memory = await self._client.info("memory")
        return {
            "total_records": int(total),
            "max_entries": self.config.max_entries,
            "key_prefix": self.prefix,
            "ttl": self.config.ttl,
            "used_memory": memory.get("used_memory_human"),
        }

    async def _health_details(self) -> Dict[str, Any]:
        await self._client.ping()
        return await self._storage_stats()

    async def get_source_stats(self) -> Dict[str, Dict[str, Any]]:
        """Por fuente: cantidad de records indexados y timestamp más reciente."""
        self._require_connected("source_stats")

        async def collect() -> Dict[str, Dict[str, Any]]:
            marker = self.source_key("")
            result: Dict[str, Dict[str, Any]] = {}
            async for key in self._client.scan_iter(match=self._pattern("source"), count=SCAN_BATCH):
                members = await self._client.zrevrange(key, 0, -1, withscores=True)
                live = set(await self._live_ids([member for member, _ in members]))
                scores = [score for member, score in members if member in live]
                latest = parse_timestamp(scores[0]) if scores else None
                result[key[len(marker):]] = {"count": len(scores), "latest": isoformat(latest)}
            return result

        stats = await self._run("source_stats", collect())
        self.on_read()
        return stats
