"""Modelo canónico en memoria y sus proyecciones de exportación."""

from .canonical_model import CanonicalDataModel, ImportShape, classify_import
from .errors import DeviceValidationError, ModelValidationError, RelationshipValidationError

__all__ = [
    "CanonicalDataModel",
    "DeviceValidationError",
    "ImportShape",
    "ModelValidationError",
    "RelationshipValidationError",
    "classify_import",
]
