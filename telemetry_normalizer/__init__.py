"""Normalización de telemetría industrial a un modelo canónico de dispositivos.

Capas:
- mapping/   → reglas de atributos, mappers por protocolo, MappingEngine
- model/     → CanonicalDataModel + exportaciones (JSON, TOON, NGSI-LD)
- storage/   → contrato async de persistencia y sus engines
"""

from .mapping import Mapper, MapperKind, MappingEngine
from .model import CanonicalDataModel, ModelValidationError
from .storage import BaseStorageAdapter, StorageFactory

__version__ = "0.4.0"

__all__ = [
    "BaseStorageAdapter",
    "CanonicalDataModel",
    "Mapper",
    "MapperKind",
    "MappingEngine",
    "ModelValidationError",
    "StorageFactory",
]
