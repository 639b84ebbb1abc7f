"""Tests del engine TimescaleDB (bootstrap y agregados) con engine mockeado.

Ejecutar:
    pytest tests/test_storage_timescaledb.py -v
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from conftest import RELATIONAL_CONFIG
from telemetry_normalizer.storage import StorageConfigError
from telemetry_normalizer.storage.adapters import TimescaleDBStorageAdapter
from telemetry_normalizer.storage.adapters.timescaledb import validate_interval


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def conn():
    mock = MagicMock()
    mock.execute.return_value.scalar.return_value = False
    mock.execute.return_value.__iter__.return_value = iter([])
    return mock


@pytest.fixture
def engine(conn):
    mock = MagicMock()
    mock.begin.return_value.__enter__.return_value = conn
    mock.connect.return_value.__enter__.return_value = conn
    return mock


def _executed_sql(conn):
    return [str(call.args[0]) for call in conn.execute.call_args_list]


# =============================================================================
# BOOTSTRAP
# =============================================================================

class TestBootstrap:

    @pytest.mark.asyncio
    async def test_extension_hypertable_and_policies(self, engine, conn):
        config = dict(
            RELATIONAL_CONFIG,
            chunkTimeInterval="12 hours",
            compressionEnabled=True,
            compressAfter="3 days",
            retentionEnabled=True,
            retentionPeriod="90 days",
        )
        adapter = TimescaleDBStorageAdapter(config, engine=engine)

        await adapter.connect()

        sql = _executed_sql(conn)
        assert any("CREATE EXTENSION IF NOT EXISTS timescaledb" in s for s in sql)
        assert any("create_hypertable" in s and "if_not_exists => TRUE" in s for s in sql)
        assert any("ALTER TABLE test_records SET (timescaledb.compress" in s for s in sql)
        assert any("add_compression_policy" in s for s in sql)
        assert any("add_retention_policy" in s for s in sql)

        params = [call.args[1] for call in conn.execute.call_args_list if len(call.args) > 1]
        assert {"table": "test_records", "chunk": "12 hours"} in params
        assert {"table": "test_records", "after": "3 days"} in params
        assert {"table": "test_records", "period": "90 days"} in params

    @pytest.mark.asyncio
    async def test_policies_disabled_by_default(self, engine, conn):
        adapter = TimescaleDBStorageAdapter(RELATIONAL_CONFIG, engine=engine)

        await adapter.connect()

        sql = _executed_sql(conn)
        assert not any("add_compression_policy" in s for s in sql)
        assert not any("add_retention_policy" in s for s in sql)

    @pytest.mark.asyncio
    async def test_compression_already_enabled_skips_alter(self, engine, conn):
        conn.execute.return_value.scalar.return_value = True
        adapter = TimescaleDBStorageAdapter(dict(RELATIONAL_CONFIG, compressionEnabled=True), engine=engine)

        await adapter.connect()

        assert not any("ALTER TABLE" in s for s in _executed_sql(conn))

    @pytest.mark.asyncio
    async def test_time_is_part_of_primary_key(self, engine):
        adapter = TimescaleDBStorageAdapter(RELATIONAL_CONFIG, engine=engine)
        await adapter.connect()
        assert {c.name for c in adapter.table.primary_key.columns} == {"id", "timestamp"}

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected_by_config(self, engine):
        adapter = TimescaleDBStorageAdapter(dict(RELATIONAL_CONFIG, retentionPeriod="1 fortnight"), engine=engine)
        with pytest.raises(StorageConfigError):
            await adapter.initialize()


# =============================================================================
# AGREGADOS
# =============================================================================

class TestAggregates:

    @pytest.mark.parametrize("value", ["1 hour", "15 minutes", "7 days", " 2 weeks "])
    def test_valid_intervals(self, value):
        assert validate_interval(value) == value.strip()

    @pytest.mark.parametrize("value", ["hour", "1h", "1 hour; DROP TABLE x", ""])
    def test_invalid_intervals(self, value):
        with pytest.raises(ValueError):
            validate_interval(value)

    @pytest.mark.asyncio
    async def test_rejects_unknown_function(self, engine):
        adapter = TimescaleDBStorageAdapter(RELATIONAL_CONFIG, engine=engine)
        await adapter.connect()
        with pytest.raises(ValueError):
            await adapter.get_aggregates(function="median")

    @pytest.mark.asyncio
    async def test_time_bucket_query(self, engine, conn):
        adapter = TimescaleDBStorageAdapter(RELATIONAL_CONFIG, engine=engine)
        await adapter.connect()
        conn.execute.reset_mock()

        rows = await adapter.get_aggregates(source_id="sensor-1", bucket="1 hour", function="max")

        assert rows == []
        stmt = conn.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "time_bucket" in sql
        assert "max(" in sql
        assert "GROUP BY" in sql
        assert adapter.stats.total_reads == 1
