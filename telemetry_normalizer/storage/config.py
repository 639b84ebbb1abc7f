"""Configuración de storage: modelos pydantic por engine + archivo JSON.

Cada engine valida su configuración con un modelo propio. Las claves se
aceptan en snake_case o en el formato camelCase del archivo
(``tableName``, ``maxConnections``...).

Archivo (``StorageConfigManager``):
{
    "storage": {
        "type": "redis",
        "config": {"host": "localhost", "keyPrefix": "telemetry:"}
    }
}
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from sqlalchemy.engine import make_url

from .errors import StorageConfigError

logger = logging.getLogger(__name__)

INTERVAL_PATTERN = re.compile(r"^\d+\s+(second|minute|hour|day|week|month|year)s?$")

DEFAULT_TABLE = "storage_records"


class _EngineConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class MemoryStorageConfig(_EngineConfig):
    max_data_points: int = Field(default=10000, ge=1, alias="maxDataPoints")

    @classmethod
    def from_env(cls) -> "MemoryStorageConfig":
        return cls(max_data_points=int(os.getenv("MEMORY_MAX_DATA_POINTS", "10000")))


class _RelationalConfig(_EngineConfig):
    host: str
    port: int = Field(ge=1, le=65535)
    database: str
    user: str
    password: str
    table_name: str = Field(default=DEFAULT_TABLE, min_length=1, alias="tableName")
    max_connections: int = Field(default=10, ge=1, alias="maxConnections")
    # milisegundos, como en el archivo de configuración
    connection_timeout: int = Field(default=2000, gt=0, alias="connectionTimeout")
    statement_timeout: int = Field(default=30000, gt=0, alias="statementTimeout")
    idle_timeout: int = Field(default=30000, gt=0, alias="idleTimeout")
    ssl: Union[bool, Dict[str, Any]] = False

    @field_validator("table_name")
    @classmethod
    def _check_table_name(cls, v: str) -> str:
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", v):
            raise ValueError(f"invalid table name: {v!r}")
        return v


class PostgresStorageConfig(_RelationalConfig):
    port: int = Field(default=5432, ge=1, le=65535)

    @classmethod
    def from_env(cls) -> "PostgresStorageConfig":
        """``POSTGRES_URL`` si existe; si no, ``POSTGRES_HOST``/``POSTGRES_*``."""
        url = os.getenv("POSTGRES_URL")
        if url:
            parsed = make_url(url)
            return cls(
                host=parsed.host or "localhost",
                port=parsed.port or 5432,
                database=parsed.database or "",
                user=parsed.username or "",
                password=parsed.password or "",
            )
        return cls(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            database=os.getenv("POSTGRES_DB", "telemetry"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", ""),
        )


class MariaDBStorageConfig(_RelationalConfig):
    port: int = Field(default=3306, ge=1, le=65535)
    connection_timeout: int = Field(default=10000, gt=0, alias="connectionTimeout")
    statement_timeout: int = Field(default=60000, gt=0, alias="queryTimeout")


class TimescaleStorageConfig(PostgresStorageConfig):
    chunk_time_interval: str = Field(default="1 day", alias="chunkTimeInterval")
    compression_enabled: bool = Field(default=False, alias="compressionEnabled")
    compress_after: str = Field(default="7 days", alias="compressAfter")
    retention_enabled: bool = Field(default=False, alias="retentionEnabled")
    retention_period: str = Field(default="30 days", alias="retentionPeriod")

    @field_validator("chunk_time_interval", "compress_after", "retention_period")
    @classmethod
    def _check_interval(cls, v: str) -> str:
        if not INTERVAL_PATTERN.match(v.strip()):
            raise ValueError(f"invalid interval {v!r}, expected e.g. '7 days'")
        return v.strip()


class MongoStorageConfig(_EngineConfig):
    url: Optional[str] = None
    host: Optional[str] = None
    port: int = Field(default=27017, ge=1, le=65535)
    database: str
    user: Optional[str] = None
    password: Optional[str] = None
    collection: str = Field(default=DEFAULT_TABLE, min_length=1)
    max_connections: int = Field(default=10, ge=1, alias="maxConnections")
    connection_timeout: int = Field(default=5000, gt=0, alias="connectionTimeout")
    socket_timeout: int = Field(default=45000, gt=0, alias="socketTimeout")
    options: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_url_or_host(self) -> "MongoStorageConfig":
        if not self.url and not self.host:
            raise ValueError("mongodb config requires url or host")
        return self


class RedisStorageConfig(_EngineConfig):
    url: Optional[str] = None
    host: Optional[str] = None
    port: int = Field(default=6379, ge=1, le=65535)
    database: int = Field(default=0, ge=0)
    password: Optional[str] = None
    key_prefix: str = Field(default="telemetry:", min_length=1, alias="keyPrefix")
    max_entries: int = Field(default=10000, ge=1, alias="maxEntries")
    ttl: Optional[int] = Field(default=None, ge=1)
    connect_timeout: int = Field(default=10000, gt=0, alias="connectTimeout")
    command_timeout: int = Field(default=5000, gt=0, alias="commandTimeout")
    options: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_url_or_host(self) -> "RedisStorageConfig":
        if not self.url and not self.host:
            raise ValueError("redis config requires url or host")
        return self

    @classmethod
    def from_env(cls) -> "RedisStorageConfig":
        return cls(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            key_prefix=os.getenv("REDIS_KEY_PREFIX", "telemetry:"),
            max_entries=int(os.getenv("REDIS_MAX_ENTRIES", "10000")),
        )


CONFIG_MODELS: Dict[str, Type[_EngineConfig]] = {
    "memory": MemoryStorageConfig,
    "postgresql": PostgresStorageConfig,
    "mariadb": MariaDBStorageConfig,
    "mongodb": MongoStorageConfig,
    "redis": RedisStorageConfig,
    "timescaledb": TimescaleStorageConfig,
}

TYPE_ALIASES = {
    "postgres": "postgresql",
    "mysql": "mariadb",
    "mongo": "mongodb",
    "timescale": "timescaledb",
}


def canonical_storage_type(storage_type: str) -> str:
    """Resuelve aliases. Raises StorageConfigError si no está soportado."""
    key = str(storage_type or "").lower()
    key = TYPE_ALIASES.get(key, key)
    if key not in CONFIG_MODELS:
        raise StorageConfigError(f"Unsupported storage type: {storage_type}")
    return key


def validate_storage_config(storage_type: str, raw: Union[Mapping[str, Any], _EngineConfig, None]) -> _EngineConfig:
    """Valida ``raw`` contra el modelo del engine.

    Returns:
        Instancia del modelo pydantic correspondiente.

    Raises:
        StorageConfigError: tipo no soportado o configuración inválida.
    """
    model = CONFIG_MODELS[canonical_storage_type(storage_type)]
    if isinstance(raw, model):
        return raw
    if isinstance(raw, _EngineConfig):
        raw = raw.model_dump()
    try:
        return model.model_validate(dict(raw or {}))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "config"
        raise StorageConfigError(
            f"Invalid {storage_type} storage configuration: {field}: {first.get('msg')}"
        ) from e


class StorageConfigManager:
    """Carga/persiste la configuración de storage en un archivo JSON.

    Si el archivo no existe se crea con la configuración por defecto
    (engine ``memory``).
    """

    DEFAULT = {"type": "memory", "config": {"maxDataPoints": 10000}}

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._type: Optional[str] = None
        self._config: Optional[_EngineConfig] = None

    def load(self) -> Tuple[str, _EngineConfig]:
        if not self.path.exists():
            logger.info("[STORAGE] Config file %s not found, creating default (memory)", self.path)
            return self.update(self.DEFAULT["type"], self.DEFAULT["config"])

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise StorageConfigError(f"Storage config file {self.path} is not valid JSON") from e

        storage = document.get("storage") if isinstance(document, Mapping) else None
        if not isinstance(storage, Mapping) or not storage.get("type"):
            raise StorageConfigError(f"Storage config file {self.path} requires storage.type")

        storage_type = canonical_storage_type(storage["type"])
        self._type = storage_type
        self._config = validate_storage_config(storage_type, storage.get("config") or {})
        logger.info("[STORAGE] Loaded storage configuration: %s", storage_type)
        return self._type, self._config

    def update(self, storage_type: str, config: Mapping[str, Any]) -> Tuple[str, _EngineConfig]:
        """Valida y persiste. Un config inválido no toca el archivo."""
        canonical = canonical_storage_type(storage_type)
        validated = validate_storage_config(canonical, config)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"storage": {"type": canonical, "config": validated.to_wire()}}
        self.path.write_text(json.dumps(document, indent=2), encoding="utf-8")

        self._type, self._config = canonical, validated
        logger.info("[STORAGE] Updated storage configuration: %s", canonical)
        return canonical, validated

    @property
    def storage_type(self) -> Optional[str]:
        return self._type

    @property
    def config(self) -> Optional[_EngineConfig]:
        return self._config

    def build_adapter(self):
        """Adapter (sin inicializar) para la configuración cargada."""
        from .factory import StorageFactory

        if self._type is None:
            self.load()
        return StorageFactory.create(self._type, self._config)
