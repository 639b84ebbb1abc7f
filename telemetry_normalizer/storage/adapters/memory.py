"""Engine transitorio en memoria.

Capacidad máxima ``max_data_points``: al superarla se descartan los records
más antiguos por ORDEN DE INSERCIÓN (FIFO). Lecturas most-recent-first por
timestamp; empates se resuelven por inserción más reciente.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, List

from ...core.domain import StorageRecord, record_matches
from ..base import BaseStorageAdapter, QueryCriteria, most_recent_first

logger = logging.getLogger(__name__)


class MemoryStorageAdapter(BaseStorageAdapter):
    storage_type = "memory"

    def __init__(self, config: Any = None):
        super().__init__(config)
        self._records: "OrderedDict[str, StorageRecord]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.evicted = 0

    @property
    def max_data_points(self) -> int:
        return self.config.max_data_points

    async def _initialize(self) -> None:
        self._records.clear()
        logger.debug("[STORAGE:memory] Initialized with capacity=%d", self.max_data_points)

    async def _connect(self) -> None:
        # siempre disponible
        return None

    async def _disconnect(self) -> None:
        return None

    async def _store(self, record: StorageRecord) -> None:
        async with self._lock:
            self._records.pop(record.id, None)
            self._records[record.id] = record
            while len(self._records) > self.max_data_points:
                evicted_id, _ = self._records.popitem(last=False)
                self.evicted += 1
                logger.debug("[STORAGE:memory] Evicted %s (capacity=%d)", evicted_id, self.max_data_points)

    async def _snapshot(self) -> List[StorageRecord]:
        """Records de más nuevo a más viejo por inserción."""
        async with self._lock:
            return list(reversed(self._records.values()))

    async def _query(self, criteria: QueryCriteria) -> List[StorageRecord]:
        matched = [r for r in await self._snapshot() if criteria.matches(r)]
        ordered = most_recent_first(matched)
        if criteria.limit is not None:
            ordered = ordered[: criteria.limit]
        return [copy.deepcopy(r) for r in ordered]

    async def _search(self, text: str, limit: int) -> List[StorageRecord]:
        hits = [r for r in await self._snapshot() if record_matches(r, text)]
        return [copy.deepcopy(r) for r in most_recent_first(hits)[:limit]]

    async def _clear(self) -> int:
        async with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    async def _storage_stats(self) -> Dict[str, Any]:
        async with self._lock:
            count = len(self._records)
            approx_kb = round(
                sum(len(json.dumps(r.to_dict(), default=str)) for r in self._records.values()) / 1024
            )
        return {
            "total_records": count,
            "max_capacity": self.max_data_points,
            "utilization_percent": count / self.max_data_points * 100,
            "evicted": self.evicted,
            "memory_usage_kb": approx_kb,
        }
