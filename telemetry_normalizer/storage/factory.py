"""Factory de storage adapters.

Resuelve aliases (``postgres``, ``mysql``, ``mongo``, ``timescale``) y crea
el adapter SIN inicializar; ``initialize()``/``connect()`` los hace el
llamador.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

from .adapters import (
    MariaDBStorageAdapter,
    MemoryStorageAdapter,
    MongoDBStorageAdapter,
    PostgreSQLStorageAdapter,
    RedisStorageAdapter,
    TimescaleDBStorageAdapter,
)
from .base import BaseStorageAdapter
from .config import CONFIG_MODELS, TYPE_ALIASES, canonical_storage_type
from .errors import StorageConfigError

logger = logging.getLogger(__name__)


class StorageFactory:
    _registry: Dict[str, Type[BaseStorageAdapter]] = {
        "memory": MemoryStorageAdapter,
        "postgresql": PostgreSQLStorageAdapter,
        "mariadb": MariaDBStorageAdapter,
        "mongodb": MongoDBStorageAdapter,
        "redis": RedisStorageAdapter,
        "timescaledb": TimescaleDBStorageAdapter,
    }

    @classmethod
    def create(cls, storage_type: str, config: Any = None, **kwargs: Any) -> BaseStorageAdapter:
        """Crea el adapter para ``storage_type``.

        Args:
            storage_type: nombre o alias del engine.
            config: dict o modelo de configuración; se valida en ``initialize()``.
            **kwargs: dependencias inyectables del engine (``engine=``, ``client=``).

        Raises:
            StorageConfigError: tipo no soportado.
        """
        key = canonical_storage_type(storage_type)
        adapter_cls = cls._registry.get(key)
        if adapter_cls is None:
            raise StorageConfigError(f"Unsupported storage type: {storage_type}")
        logger.debug("[STORAGE] Creating %s adapter", key)
        return adapter_cls(config, **kwargs)

    @classmethod
    def register_storage_type(
        cls,
        name: str,
        adapter_cls: Type[BaseStorageAdapter],
        config_model: Optional[type] = None,
    ) -> None:
        """Registra un engine adicional (o reemplaza uno existente).

        Un tipo nuevo necesita ``config_model`` para validar su configuración.
        """
        if not (isinstance(adapter_cls, type) and issubclass(adapter_cls, BaseStorageAdapter)):
            raise TypeError("adapter_cls must be a BaseStorageAdapter subclass")
        key = name.lower()
        if config_model is not None:
            CONFIG_MODELS[key] = config_model
        elif key not in CONFIG_MODELS:
            raise StorageConfigError(f"Storage type {name} needs a config model")
        cls._registry[key] = adapter_cls
        logger.info("[STORAGE] Registered storage type: %s", key)

    @classmethod
    def get_supported_types(cls) -> List[str]:
        return sorted(cls._registry)

    @classmethod
    def is_type_supported(cls, storage_type: str) -> bool:
        key = str(storage_type or "").lower()
        return TYPE_ALIASES.get(key, key) in cls._registry
