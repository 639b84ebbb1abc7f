"""Errores de validación del modelo canónico."""


class ModelValidationError(ValueError):
    """Entrada rechazada por el modelo. No se aplicó ninguna mutación."""


class DeviceValidationError(ModelValidationError):
    """Device sin ``id``/``type`` o con mediciones mal formadas."""


class RelationshipValidationError(ModelValidationError):
    """Relationship sin ``type``, ``source`` o ``target``."""
