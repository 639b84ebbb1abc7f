"""Measurement - valor tipado con nombre dentro de un Device.

La inferencia de tipo es determinista y no depende de estado previo:
misma entrada → mismo tipo.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class MeasurementType(str, Enum):
    """Conjunto canónico de tipos de medición."""
    BOOL = "bool"
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    OBJECT = "object"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> Optional["MeasurementType"]:
        """Convierte un string del wire al enum; None si no es un tipo canónico."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).lower())
        except ValueError:
            return None


def infer_type(value: Any) -> MeasurementType:
    """Tabla de inferencia.

    bool → bool, str → string, número entero → int, otro número → float,
    estructura (dict/list) → object, None → unknown.
    """
    if value is None:
        return MeasurementType.UNKNOWN
    # bool antes que int: bool es subclase de int en Python
    if isinstance(value, bool):
        return MeasurementType.BOOL
    if isinstance(value, str):
        return MeasurementType.STRING
    if isinstance(value, int):
        return MeasurementType.INT
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return MeasurementType.INT
        return MeasurementType.FLOAT
    if isinstance(value, (dict, list, tuple)):
        return MeasurementType.OBJECT
    return MeasurementType.UNKNOWN


@dataclass
class Measurement:
    id: str
    value: Any = None
    type: MeasurementType = MeasurementType.UNKNOWN
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, measurement_id: str, value: Any, **metadata: Any) -> "Measurement":
        return cls(id=measurement_id, value=value, type=infer_type(value), metadata=dict(metadata))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Measurement":
        """Construye desde el formato wire; si falta ``type`` se infiere."""
        value = data.get("value")
        mtype = MeasurementType.parse(data["type"]) if data.get("type") is not None else None
        return cls(
            id=str(data["id"]),
            value=value,
            type=mtype or infer_type(value),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "value": self.value,
        }
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result
