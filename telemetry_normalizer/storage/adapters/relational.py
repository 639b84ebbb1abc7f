"""Base de los engines relacionales (SQLAlchemy Core, engine síncrono).

El I/O se ejecuta en un worker thread (``asyncio.to_thread``) sobre un
engine con pool acotado:

- pool de ``max_connections`` conexiones, sin overflow;
- ``pool_timeout`` = ``connection_timeout``: con el pool agotado el
  checkout falla con TimeoutError en lugar de bloquear;
- statement timeout por connect args del driver.

Tabla e índices se crean idempotentemente en ``connect()``
(``metadata.create_all(checkfirst=True)``).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    cast,
    delete,
    func,
    insert,
    or_,
    select,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import URL, Engine

from common.db import build_engine, build_sqlalchemy_url, ping

from ...core.domain import StorageRecord
from ..base import BaseStorageAdapter, QueryCriteria

logger = logging.getLogger(__name__)

JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")
TIMESTAMP_TYPE = DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), "mysql", "mariadb")


def build_records_table(metadata: MetaData, name: str, *, time_in_primary_key: bool = False) -> Table:
    """Tabla de StorageRecords + índices comunes.

    ``time_in_primary_key``: PK (id, timestamp), requerido por hypertables.
    """
    return Table(
        name,
        metadata,
        Column("id", String(255), primary_key=True),
        Column("source_id", String(255), nullable=True),
        Column("source_type", String(100), nullable=True),
        Column("timestamp", TIMESTAMP_TYPE, nullable=False, primary_key=time_in_primary_key),
        Column("data", JSON_TYPE, nullable=True),
        Column("metadata", JSON_TYPE, nullable=True),
        Column("quality", JSON_TYPE, nullable=True),
        Column("processing", JSON_TYPE, nullable=True),
        Column("stored_at", TIMESTAMP_TYPE, nullable=False),
        Index(f"idx_{name}_source_id", "source_id"),
        Index(f"idx_{name}_timestamp", "timestamp"),
        Index(f"idx_{name}_stored_at", "stored_at"),
        Index(f"idx_{name}_source_timestamp", "source_id", "timestamp"),
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RelationalStorageAdapter(BaseStorageAdapter):
    """Engine relacional genérico. Subclases fijan driver y connect args.

    Args:
        config: dict o modelo de configuración del engine.
        engine: engine SQLAlchemy ya creado (p.ej. SQLite en tests); si se
            pasa, el adapter no lo crea ni lo cierra.
    """

    drivername: str = ""

    def __init__(self, config: Any = None, engine: Optional[Engine] = None):
        super().__init__(config)
        self._engine = engine
        self._owns_engine = engine is None
        self.sql_metadata = MetaData()
        self.table: Optional[Table] = None

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name if self._engine is not None else ""

    # ------------------------------------------------------------------
    # Construcción
    # ------------------------------------------------------------------

    def build_url(self) -> URL:
        return build_sqlalchemy_url(
            self.drivername,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
            user=self.config.user,
            password=self.config.password,
        )

    def connect_args(self) -> Dict[str, Any]:
        return {}

    def build_table(self) -> Table:
        return build_records_table(self.sql_metadata, self.config.table_name)

    async def _initialize(self) -> None:
        if self._engine is None:
            self._engine = build_engine(
                self.build_url(),
                pool_size=self.config.max_connections,
                pool_timeout=self.config.connection_timeout / 1000,
                max_overflow=0,
                pool_recycle=max(1, self.config.idle_timeout // 1000),
                connect_args=self.connect_args(),
            )
        if self.table is None:
            self.table = self.build_table()

    # ------------------------------------------------------------------
    # Conexión / esquema
    # ------------------------------------------------------------------

    async def _connect(self) -> None:
        await asyncio.to_thread(self._bootstrap)
        logger.info(
            "[STORAGE:%s] Connected, table=%s dialect=%s",
            self.storage_type,
            self.table.name,
            self.dialect_name,
        )

    def _bootstrap(self) -> None:
        ping(self._engine)
        self.sql_metadata.create_all(self._engine, checkfirst=True)

    async def _disconnect(self) -> None:
        if self._owns_engine and self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)

    # ------------------------------------------------------------------
    # Conversión
    # ------------------------------------------------------------------

    def _db_time(self, value: datetime) -> datetime:
        # solo postgres conserva la zona; el resto guarda UTC naive
        if self.dialect_name == "postgresql":
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def _to_row(self, record: StorageRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "source_id": record.source_id,
            "source_type": record.source_type,
            "timestamp": self._db_time(record.timestamp),
            "data": record.data,
            "metadata": record.metadata,
            "quality": record.quality,
            "processing": record.processing,
            "stored_at": self._db_time(record.stored_at),
        }

    @staticmethod
    def _from_row(row: Any) -> StorageRecord:
        m = row._mapping
        return StorageRecord(
            id=m["id"],
            source_id=m["source_id"],
            source_type=m["source_type"],
            timestamp=_as_utc(m["timestamp"]),
            data=m["data"],
            metadata=m["metadata"] or {},
            quality=m["quality"] or {},
            processing=m["processing"] or {},
            stored_at=_as_utc(m["stored_at"]),
        )

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def _store(self, record: StorageRecord) -> None:
        await asyncio.to_thread(self._store_sync, record)

    def _store_sync(self, record: StorageRecord) -> None:
        t = self.table
        with self._engine.begin() as conn:
            # id asignado por el llamador: el último write gana
            conn.execute(delete(t).where(t.c.id == record.id))
            conn.execute(insert(t).values(**self._to_row(record)))

    async def _query(self, criteria: QueryCriteria) -> List[StorageRecord]:
        return await asyncio.to_thread(self._query_sync, criteria)

    def _query_sync(self, criteria: QueryCriteria) -> List[StorageRecord]:
        t = self.table
        stmt = select(t)
        if criteria.source_id is not None:
            stmt = stmt.where(t.c.source_id == criteria.source_id)
        if criteria.start_time is not None:
            stmt = stmt.where(t.c.timestamp >= self._db_time(criteria.start_time))
        if criteria.end_time is not None:
            stmt = stmt.where(t.c.timestamp <= self._db_time(criteria.end_time))
        stmt = stmt.order_by(t.c.timestamp.desc(), t.c.stored_at.desc())
        if criteria.limit is not None:
            stmt = stmt.limit(criteria.limit)
        with self._engine.connect() as conn:
            return [self._from_row(row) for row in conn.execute(stmt)]

    async def _search(self, text: str, limit: int) -> List[StorageRecord]:
        return await asyncio.to_thread(self._search_sync, text, limit)

    def _search_sync(self, text: str, limit: int) -> List[StorageRecord]:
        t = self.table
        needle = text.lower()
        searchable = (
            t.c.id,
            t.c.source_id,
            t.c.source_type,
            cast(t.c.data, String),
            cast(t.c.metadata, String),
        )
        stmt = (
            select(t)
            .where(or_(*(func.lower(col, type_=String).contains(needle, autoescape=True) for col in searchable)))
            .order_by(t.c.timestamp.desc(), t.c.stored_at.desc())
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [self._from_row(row) for row in conn.execute(stmt)]

    async def _clear(self) -> int:
        return await asyncio.to_thread(self._clear_sync)

    def _clear_sync(self) -> int:
        t = self.table
        with self._engine.begin() as conn:
            count = conn.execute(select(func.count()).select_from(t)).scalar_one()
            conn.execute(delete(t))
        return int(count)

    async def _storage_stats(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._storage_stats_sync)

    def _storage_stats_sync(self) -> Dict[str, Any]:
        t = self.table
        stmt = select(
            func.count(),
            func.count(func.distinct(t.c.source_id)),
            func.min(t.c.timestamp),
            func.max(t.c.timestamp),
        ).select_from(t)
        with self._engine.connect() as conn:
            total, sources, oldest, newest = conn.execute(stmt).one()
        pool = self._engine.pool
        return {
            "table": t.name,
            "total_records": int(total),
            "unique_sources": int(sources),
            "oldest_record": _isoformat_or_none(oldest),
            "newest_record": _isoformat_or_none(newest),
            "pool": pool.status(),
        }


def _isoformat_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value).isoformat().replace("+00:00", "Z")
    return str(value)
