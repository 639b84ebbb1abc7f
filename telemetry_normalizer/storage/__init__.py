"""Contrato de storage y sus engines."""

from .base import BaseStorageAdapter, QueryCriteria
from .config import StorageConfigManager, validate_storage_config
from .errors import NotConnectedError, StorageConfigError, StorageConnectivityError, StorageError
from .factory import StorageFactory

__all__ = [
    "BaseStorageAdapter",
    "NotConnectedError",
    "QueryCriteria",
    "StorageConfigError",
    "StorageConfigManager",
    "StorageConnectivityError",
    "StorageError",
    "StorageFactory",
    "validate_storage_config",
]
