"""Engine PostgreSQL: JSONB + índice GIN sobre ``data``."""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import Index, Table

from .relational import RelationalStorageAdapter, build_records_table


class PostgreSQLStorageAdapter(RelationalStorageAdapter):
    storage_type = "postgresql"
    drivername = "postgresql+psycopg"

    def connect_args(self) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "connect_timeout": max(1, self.config.connection_timeout // 1000),
            "options": f"-c statement_timeout={self.config.statement_timeout}",
        }
        if self.config.ssl:
            args["sslmode"] = "require"
            if isinstance(self.config.ssl, dict):
                args.update(self.config.ssl)
        return args

    def build_table(self) -> Table:
        table = build_records_table(self.sql_metadata, self.config.table_name)
        self._add_gin_index(table)
        return table

    def _add_gin_index(self, table: Table) -> None:
        if self.dialect_name == "postgresql":
            Index(f"idx_{table.name}_data_gin", table.c.data, postgresql_using="gin")
