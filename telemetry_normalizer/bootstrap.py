"""Wiring desde variables de entorno / ``.env``.

``get_settings()`` (common.config) define namespace, source, engine de
storage y ruta del archivo de configuración de storage.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from common.config import Settings, configure_logging, get_settings

from .mapping import MappingEngine
from .model import CanonicalDataModel
from .storage import BaseStorageAdapter, StorageConfigManager
from .storage.config import CONFIG_MODELS, canonical_storage_type

logger = logging.getLogger(__name__)


def create_mapping_engine(settings: Optional[Settings] = None) -> MappingEngine:
    settings = settings or get_settings()
    model = CanonicalDataModel(source=settings.source, namespace=settings.namespace)
    return MappingEngine(namespace=settings.namespace, model=model)


def create_storage(settings: Optional[Settings] = None) -> BaseStorageAdapter:
    """Adapter sin inicializar.

    Si el archivo de configuración existe manda el archivo; si no, se arma
    la configuración de ``STORAGE_TYPE`` desde el entorno y se persiste.
    """
    settings = settings or get_settings()
    manager = StorageConfigManager(settings.storage_config_path)

    if not Path(settings.storage_config_path).exists():
        storage_type = canonical_storage_type(settings.storage_type)
        model = CONFIG_MODELS[storage_type]
        if hasattr(model, "from_env"):
            manager.update(storage_type, model.from_env().to_wire())
        else:
            logger.warning(
                "[STORAGE] No env configuration for %s, using default file config", storage_type
            )
    return manager.build_adapter()


def bootstrap(settings: Optional[Settings] = None):
    """Logging + engine de mapeo + adapter de storage (sin conectar)."""
    settings = settings or get_settings()
    configure_logging(settings)
    engine = create_mapping_engine(settings)
    storage = create_storage(settings)
    logger.info(
        "[ENGINE] Bootstrapped namespace=%s storage=%s", settings.namespace, storage.storage_type
    )
    return engine, storage
