"""Engine TimescaleDB: PostgreSQL + hypertable particionada por tiempo.

Bootstrap en ``connect()`` (todo idempotente):
1. ``CREATE EXTENSION IF NOT EXISTS timescaledb``
2. tabla + índices (PK (id, timestamp), requerido por la hypertable)
3. ``create_hypertable(..., if_not_exists => TRUE)`` con chunk interval
4. política de compresión (opcional)
5. política de retención (opcional)

Extensión fuera del contrato común: ``get_aggregates`` (time_bucket).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Float, Index, Table, cast, func, select, text
from sqlalchemy.dialects.postgresql import INTERVAL

from common.db import ping

from ...core.domain import parse_timestamp
from ...core.domain.storage_record import isoformat
from ..config import INTERVAL_PATTERN
from .postgresql import PostgreSQLStorageAdapter
from .relational import build_records_table

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = ("avg", "min", "max", "sum", "count")


def validate_interval(value: str) -> str:
    """``'7 days'``, ``'1 hour'``... Raises ValueError si no es válido."""
    cleaned = str(value).strip()
    if not INTERVAL_PATTERN.match(cleaned):
        raise ValueError(f"invalid interval {value!r}, expected e.g. '1 hour' or '7 days'")
    return cleaned


class TimescaleDBStorageAdapter(PostgreSQLStorageAdapter):
    storage_type = "timescaledb"

    def build_table(self) -> Table:
        table = build_records_table(self.sql_metadata, self.config.table_name, time_in_primary_key=True)
        Index(f"idx_{table.name}_source_time_desc", table.c.source_id, table.c.timestamp.desc())
        self._add_gin_index(table)
        return table

    def _bootstrap(self) -> None:
        cfg = self.config
        table = self.table.name
        ping(self._engine)

        with self._engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS timescaledb"))

        self.sql_metadata.create_all(self._engine, checkfirst=True)

        with self._engine.begin() as conn:
            conn.execute(
                text(
                    "SELECT create_hypertable(CAST(:table AS regclass), 'timestamp', "
                    "chunk_time_interval => CAST(:chunk AS INTERVAL), if_not_exists => TRUE)"
                ),
                {"table": table, "chunk": validate_interval(cfg.chunk_time_interval)},
            )
            logger.info(
                "[STORAGE:timescaledb] Hypertable %s ready (chunk=%s)", table, cfg.chunk_time_interval
            )

            if cfg.compression_enabled:
                enabled = conn.execute(
                    text(
                        "SELECT compression_enabled FROM timescaledb_information.hypertables "
                        "WHERE hypertable_name = :table"
                    ),
                    {"table": table},
                ).scalar()
                if not enabled:
                    # nombre de tabla validado como identificador en la config
                    conn.execute(
                        text(
                            f"ALTER TABLE {table} SET (timescaledb.compress, "
                            "timescaledb.compress_segmentby = 'source_id', "
                            "timescaledb.compress_orderby = '\"timestamp\" DESC')"
                        )
                    )
                conn.execute(
                    text(
                        "SELECT add_compression_policy(CAST(:table AS regclass), "
                        "CAST(:after AS INTERVAL), if_not_exists => TRUE)"
                    ),
                    {"table": table, "after": validate_interval(cfg.compress_after)},
                )
                logger.info("[STORAGE:timescaledb] Compression policy: after %s", cfg.compress_after)

            if cfg.retention_enabled:
                conn.execute(
                    text(
                        "SELECT add_retention_policy(CAST(:table AS regclass), "
                        "CAST(:period AS INTERVAL), if_not_exists => TRUE)"
                    ),
                    {"table": table, "period": validate_interval(cfg.retention_period)},
                )
                logger.info("[STORAGE:timescaledb] Retention policy: %s", cfg.retention_period)

    async def get_aggregates(
        self,
        source_id: Optional[str] = None,
        bucket: str = "1 hour",
        start_time: Any = None,
        end_time: Any = None,
        function: str = "avg",
        field: str = "value",
    ) -> List[Dict[str, Any]]:
        """Agregado por ``time_bucket`` de ``data[field]`` como float.

        Returns:
            ``[{bucket, source_id, value, count}]``, bucket más reciente primero.

        Raises:
            ValueError: bucket o función no soportados.
        """
        bucket = validate_interval(bucket)
        function = function.lower()
        if function not in AGGREGATE_FUNCTIONS:
            raise ValueError(f"function must be one of {AGGREGATE_FUNCTIONS}, got {function!r}")
        self._require_connected("aggregates")

        rows = await self._run(
            "aggregates",
            asyncio.to_thread(
                self._aggregates_sync,
                source_id,
                bucket,
                parse_timestamp(start_time),
                parse_timestamp(end_time),
                function,
                field,
            ),
        )
        self.on_read()
        return rows

    def _aggregates_sync(self, source_id, bucket, start, end, function, field) -> List[Dict[str, Any]]:
        t = self.table
        bucket_col = func.time_bucket(cast(bucket, INTERVAL), t.c.timestamp).label("bucket")
        value = cast(t.c.data[field].as_string(), Float)
        aggregate = getattr(func, function)(value).label("value")

        stmt = select(bucket_col, t.c.source_id, aggregate, func.count().label("count"))
        if source_id is not None:
            stmt = stmt.where(t.c.source_id == source_id)
        if start is not None:
            stmt = stmt.where(t.c.timestamp >= start)
        if end is not None:
            stmt = stmt.where(t.c.timestamp <= end)
        stmt = stmt.group_by(bucket_col, t.c.source_id).order_by(bucket_col.desc())

        with self._engine.connect() as conn:
            return [
                {
                    "bucket": isoformat(row.bucket),
                    "source_id": row.source_id,
                    "value": row.value,
                    "count": row.count,
                }
                for row in conn.execute(stmt)
            ]

    def _storage_stats_sync(self) -> Dict[str, Any]:
        stats = super()._storage_stats_sync()
        with self._engine.connect() as conn:
            chunks = conn.execute(
                text("SELECT count(*) FROM timescaledb_information.chunks WHERE hypertable_name = :table"),
                {"table": self.table.name},
            ).scalar_one()
        stats.update(
            {
                "chunks": int(chunks),
                "chunk_time_interval": self.config.chunk_time_interval,
                "compression_enabled": self.config.compression_enabled,
                "retention_period": self.config.retention_period if self.config.retention_enabled else None,
            }
        )
        return stats
