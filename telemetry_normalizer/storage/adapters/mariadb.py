"""Engine MariaDB/MySQL (PyMySQL)."""

from __future__ import annotations

from typing import Any, Dict

from .relational import RelationalStorageAdapter


class MariaDBStorageAdapter(RelationalStorageAdapter):
    storage_type = "mariadb"
    drivername = "mysql+pymysql"

    def connect_args(self) -> Dict[str, Any]:
        # PyMySQL trabaja en segundos
        query_timeout = max(1, self.config.statement_timeout // 1000)
        args: Dict[str, Any] = {
            "connect_timeout": max(1, self.config.connection_timeout // 1000),
            "read_timeout": query_timeout,
            "write_timeout": query_timeout,
            "charset": "utf8mb4",
        }
        if isinstance(self.config.ssl, dict):
            args["ssl"] = self.config.ssl
        elif self.config.ssl:
            args["ssl_verify_cert"] = True
        return args
