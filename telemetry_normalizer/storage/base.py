"""Contrato común de los storage adapters.

``BaseStorageAdapter`` implementa la semántica externa idéntica para todos
los engines (validación de configuración, wrapping en StorageRecord,
contadores, orden most-recent-first, filtro de membresía en ``search``,
errores de conectividad visibles) y delega el I/O nativo en hooks
``_connect``/``_store``/``_query``/... de cada engine.

Errores:
- ``StorageConfigError`` en ``initialize`` si la configuración no valida.
- ``StorageConnectivityError`` para TODO fallo de I/O, después del hook
  ``on_error`` (contador + log + prometheus). Nunca se silencia.
- ``NotConnectedError`` si se hace I/O antes de ``connect()``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from ..core.domain import StorageRecord, parse_timestamp, record_matches
from ..core.domain.storage_record import isoformat, utcnow
from ..metrics import STORAGE_ERRORS, STORAGE_OPERATIONS
from .config import validate_storage_config
from .errors import NotConnectedError, StorageConnectivityError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


@dataclass
class AdapterStats:
    """Contadores comunes de un adapter."""

    total_writes: int = 0
    total_reads: int = 0
    total_errors: int = 0
    last_write: Optional[datetime] = None
    last_read: Optional[datetime] = None
    connection_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_writes": self.total_writes,
            "total_reads": self.total_reads,
            "total_errors": self.total_errors,
            "last_write": isoformat(self.last_write),
            "last_read": isoformat(self.last_read),
            "connection_time": isoformat(self.connection_time),
        }


@dataclass
class QueryCriteria:
    """Filtro simple + límite. ``start_time``/``end_time`` son cotas
    independientes e inclusivas; cualquiera puede omitirse.

    ``limit=None`` significa sin límite.
    """

    source_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: Optional[int] = DEFAULT_LIMIT

    def __post_init__(self) -> None:
        self.start_time = parse_timestamp(self.start_time)
        self.end_time = parse_timestamp(self.end_time)
        if self.limit is not None:
            self.limit = int(self.limit)
            if self.limit < 0:
                raise ValueError(f"limit must be >= 0, got {self.limit}")

    @classmethod
    def coerce(cls, criteria: Union["QueryCriteria", Mapping[str, Any], None] = None, **kwargs: Any) -> "QueryCriteria":
        """Acepta QueryCriteria, dict (snake o camelCase) o kwargs."""
        if isinstance(criteria, QueryCriteria) and not kwargs:
            return criteria
        raw: Dict[str, Any] = {}
        if isinstance(criteria, QueryCriteria):
            raw.update(
                source_id=criteria.source_id,
                start_time=criteria.start_time,
                end_time=criteria.end_time,
                limit=criteria.limit,
            )
        elif isinstance(criteria, Mapping):
            raw.update(criteria)
        raw.update(kwargs)

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in raw:
                    return raw[key]
            return default

        return cls(
            source_id=pick("source_id", "sourceId"),
            start_time=pick("start_time", "startTime"),
            end_time=pick("end_time", "endTime"),
            limit=pick("limit", default=DEFAULT_LIMIT),
        )

    def matches(self, record: StorageRecord) -> bool:
        if self.source_id is not None and record.source_id != self.source_id:
            return False
        if self.start_time is not None and record.timestamp < self.start_time:
            return False
        if self.end_time is not None and record.timestamp > self.end_time:
            return False
        return True


def most_recent_first(records: List[StorageRecord]) -> List[StorageRecord]:
    """Orden por timestamp descendente; estable para empates."""
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


class BaseStorageAdapter(ABC):
    """Adapter async con semántica común. Subclases implementan los hooks."""

    storage_type: str = "base"

    def __init__(self, config: Any = None):
        self.raw_config = config
        self.config: Any = None
        self.is_connected = False
        self.is_initialized = False
        self.stats = AdapterStats()

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Valida configuración y reserva cliente/pool (sin I/O)."""
        self.config = validate_storage_config(self.storage_type, self.raw_config)
        logger.debug("[STORAGE:%s] Initializing adapter", self.storage_type)
        await self._initialize()
        self.is_initialized = True

    async def connect(self) -> None:
        if not self.is_initialized:
            await self.initialize()
        if self.is_connected:
            return
        try:
            await self._connect()
        except StorageError:
            raise
        except Exception as e:
            raise self.on_error("connect", e) from e
        self.on_connected()

    async def disconnect(self) -> None:
        if not self.is_connected:
            return
        try:
            await self._disconnect()
        except Exception as e:
            self.is_connected = False
            raise self.on_error("disconnect", e) from e
        self.on_disconnected()

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def store(self, data: Mapping[str, Any]) -> str:
        """Envuelve ``data`` en un StorageRecord (``stored_at`` = ahora) y lo persiste.

        Returns:
            Id del record.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"store() expects a mapping, got {type(data).__name__}")
        self._require_connected("store")
        record = StorageRecord.create(data)
        await self._run("store", self._store(record))
        self.on_write()
        return record.id

    async def query(
        self,
        criteria: Union[QueryCriteria, Mapping[str, Any], None] = None,
        **kwargs: Any,
    ) -> List[StorageRecord]:
        criteria = QueryCriteria.coerce(criteria, **kwargs)
        self._require_connected("query")
        if criteria.limit == 0:
            return []
        records = await self._run("query", self._query(criteria))
        self.on_read()
        return most_recent_first(records)[: criteria.limit]

    async def get_latest(self, limit: int = DEFAULT_LIMIT) -> List[StorageRecord]:
        return await self.query(QueryCriteria(limit=limit))

    async def get_by_source(self, source_id: str, limit: int = DEFAULT_LIMIT) -> List[StorageRecord]:
        return await self.query(QueryCriteria(source_id=source_id, limit=limit))

    async def get_by_time_range(
        self,
        start_time: Any = None,
        end_time: Any = None,
        limit: Optional[int] = None,
    ) -> List[StorageRecord]:
        return await self.query(QueryCriteria(start_time=start_time, end_time=end_time, limit=limit))

    async def search(self, text: str, limit: int = DEFAULT_LIMIT) -> List[StorageRecord]:
        """Búsqueda best-effort. Todo resultado contiene ``text`` en algún
        campo buscable; completitud y ranking dependen del engine.
        """
        self._require_connected("search")
        if not text or limit <= 0:
            return []
        candidates = await self._run("search", self._search(text, limit))
        self.on_read()
        return [r for r in candidates if record_matches(r, text)][:limit]

    async def clear(self) -> int:
        """Borra todos los records del adapter. Devuelve cuántos había."""
        self._require_connected("clear")
        removed = await self._run("clear", self._clear())
        logger.info("[STORAGE:%s] Cleared %d records", self.storage_type, removed)
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.storage_type,
            "is_connected": self.is_connected,
            "is_initialized": self.is_initialized,
            "stats": self.stats.to_dict(),
        }
        if self.is_connected:
            result["storage"] = await self._run("stats", self._storage_stats())
        return result

    async def health_check(self) -> Dict[str, Any]:
        """Estado + diagnóstico del engine. No lanza excepción."""
        result: Dict[str, Any] = {
            "status": "unhealthy",
            "type": self.storage_type,
            "last_check": isoformat(utcnow()),
            "stats": self.stats.to_dict(),
            "details": {},
        }
        if not self.is_connected:
            result["details"] = {"error": "not connected"}
            return result
        try:
            result["details"] = await self._health_details()
        except Exception as e:
            logger.warning("[STORAGE:%s] Health check failed: %s", self.storage_type, e)
            result["details"] = {"error": str(e)}
            return result
        result["status"] = "healthy"
        return result

    # ------------------------------------------------------------------
    # Hooks de eventos
    # ------------------------------------------------------------------

    def on_connected(self) -> None:
        self.is_connected = True
        self.stats.connection_time = utcnow()
        logger.info("[STORAGE:%s] Adapter connected", self.storage_type)

    def on_disconnected(self) -> None:
        self.is_connected = False
        logger.warning("[STORAGE:%s] Adapter disconnected", self.storage_type)

    def on_error(self, operation: str, error: BaseException) -> StorageConnectivityError:
        """Cuenta y loguea el error; devuelve la excepción a lanzar."""
        self.stats.total_errors += 1
        STORAGE_ERRORS.labels(engine=self.storage_type).inc()
        if isinstance(error, StorageConnectivityError):
            logger.error("[STORAGE:%s] %s", self.storage_type, error)
            return error
        logger.error("[STORAGE:%s] %s failed: %s", self.storage_type, operation, error)
        return StorageConnectivityError(self.storage_type, operation, str(error))

    def on_write(self) -> None:
        self.stats.total_writes += 1
        self.stats.last_write = utcnow()
        STORAGE_OPERATIONS.labels(engine=self.storage_type, operation="write").inc()

    def on_read(self) -> None:
        self.stats.total_reads += 1
        self.stats.last_read = utcnow()
        STORAGE_OPERATIONS.labels(engine=self.storage_type, operation="read").inc()

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _require_connected(self, operation: str) -> None:
        if not self.is_connected:
            raise self.on_error(operation, NotConnectedError(self.storage_type, operation))

    async def _run(self, operation: str, awaitable: Any) -> Any:
        try:
            return await awaitable
        except Exception as e:
            raise self.on_error(operation, e) from e

    async def _initialize(self) -> None:
        """Reserva cliente/pool. Por defecto nada."""

    @abstractmethod
    async def _connect(self) -> None:
        """Establece conectividad y crea esquema/índices idempotentemente."""

    @abstractmethod
    async def _disconnect(self) -> None:
        ...

    @abstractmethod
    async def _store(self, record: StorageRecord) -> None:
        ...

    @abstractmethod
    async def _query(self, criteria: QueryCriteria) -> List[StorageRecord]:
        """Records que cumplen ``criteria``, most-recent-first, hasta ``limit``."""

    @abstractmethod
    async def _search(self, text: str, limit: int) -> List[StorageRecord]:
        """Candidatos nativos; el filtro de membresía lo aplica la base."""

    @abstractmethod
    async def _clear(self) -> int:
        ...

    @abstractmethod
    async def _storage_stats(self) -> Dict[str, Any]:
        ...

    async def _health_details(self) -> Dict[str, Any]:
        return await self._storage_stats()
