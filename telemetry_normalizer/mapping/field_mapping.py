"""Mapeos de campos por fuente (``sourceId``).

Un mapeo copia campos del payload crudo (rutas con puntos, p.ej.
``registers.temperature``) a un documento destino, con una transformación
opcional por campo. Las transformaciones pasan por el motor de reglas: un
fallo deja el valor original, se loguea y se cuenta.

Configuración::

    {
        "sourceId": "plc-7",
        "target": {"type": "Boiler"},
        "includeMetadata": true,
        "mappings": [
            {"sourceField": "registers.temp", "targetField": "temperature",
             "transform": "scale", "transformConfig": {"factor": 0.1, "offset": -40}}
        ]
    }
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.domain.storage_record import isoformat, utcnow
from .rules import (
    MappingRule,
    RuleFailureCounter,
    Transform,
    TransformSpec,
    TransformType,
    apply_rule,
    apply_transform,
)

logger = logging.getLogger(__name__)

FIELD_TRANSFORMS: Dict[str, TransformType] = {
    "number": TransformType.TO_NUMBER,
    "string": TransformType.TO_STRING,
    "boolean": TransformType.TO_BOOLEAN,
    "round": TransformType.ROUND,
    "uppercase": TransformType.UPPERCASE,
    "lowercase": TransformType.LOWERCASE,
}
PASSTHROUGH = (None, "", "direct")

MISSING = object()


class FieldMappingError(ValueError):
    """Configuración de mapeo de campos inválida."""


@dataclass(frozen=True)
class FieldMapping:
    source_field: str
    target_field: str
    transform: Optional[str] = None
    transform_config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: Any) -> "FieldMapping":
        if not isinstance(raw, Mapping) or not raw.get("sourceField", raw.get("source_field")):
            raise FieldMappingError(f"Field mapping requires sourceField: {raw!r}")
        source_field = str(raw.get("sourceField", raw.get("source_field")))
        return cls(
            source_field=source_field,
            target_field=str(raw.get("targetField", raw.get("target_field")) or source_field),
            transform=raw.get("transform"),
            transform_config=dict(raw.get("transformConfig", raw.get("transform_config")) or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceField": self.source_field,
            "targetField": self.target_field,
            "transform": self.transform,
            "transformConfig": dict(self.transform_config),
        }


@dataclass(frozen=True)
class SourceMapping:
    source_id: str
    target: Dict[str, Any]
    mappings: List[FieldMapping]
    include_metadata: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: Mapping[str, Any]) -> "SourceMapping":
        validate_mapping(raw)
        known = {"sourceId", "target", "mappings", "includeMetadata"}
        return cls(
            source_id=str(raw["sourceId"]),
            target=copy.deepcopy(dict(raw["target"])),
            mappings=[FieldMapping.from_config(item) for item in raw["mappings"]],
            include_metadata=raw.get("includeMetadata") is not False,
            extra={k: copy.deepcopy(v) for k, v in raw.items() if k not in known},
        )

    @property
    def target_type(self) -> str:
        return self.target["type"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            **copy.deepcopy(self.extra),
            "sourceId": self.source_id,
            "target": copy.deepcopy(self.target),
            "includeMetadata": self.include_metadata,
            "mappings": [m.to_dict() for m in self.mappings],
        }


def validate_mapping(raw: Any) -> bool:
    """Valida la forma mínima de un mapeo.

    Raises:
        FieldMappingError: falta ``sourceId``, ``target.type`` o la lista
            ``mappings``.
    """
    if not isinstance(raw, Mapping) or not raw.get("sourceId"):
        raise FieldMappingError("Mapping configuration requires sourceId")
    target = raw.get("target")
    if not isinstance(target, Mapping) or not target.get("type"):
        raise FieldMappingError("Mapping configuration requires target.type")
    if not isinstance(raw.get("mappings"), (list, tuple)):
        raise FieldMappingError("Mapping configuration requires mappings array")
    return True


def extract_value(data: Any, path: str) -> Any:
    """Valor en ``path`` (separado por puntos) o ``MISSING``.

    Índices numéricos recorren listas (``readings.0.value``).
    """
    current = data
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return MISSING
    return current


def set_value(target: Dict[str, Any], path: str, value: Any) -> bool:
    """Escribe ``value`` en ``path`` creando dicts intermedios.

    Returns:
        False si un tramo intermedio ya existe y no es un dict.
    """
    *parents, last = path.split(".")
    current = target
    for key in parents:
        current = current.setdefault(key, {})
        if not isinstance(current, dict):
            return False
    current[last] = value
    return True


def field_transform(mapping: FieldMapping) -> Optional[TransformSpec]:
    name = mapping.transform
    if name in PASSTHROUGH:
        return None
    config = mapping.transform_config

    if name == "scale":
        scale = Transform(type=TransformType.SCALE.value, factor=config.get("factor"))
        offset = Transform(type=TransformType.OFFSET.value, offset_amount=config.get("offset"))

        def scale_with_offset(value: Any) -> Any:
            return apply_transform(apply_transform(value, scale), offset)

        return scale_with_offset

    kind = FIELD_TRANSFORMS.get(name)
    # tipo desconocido: el motor de reglas lo loguea y deja el valor
    return Transform.from_config({**config, "type": kind.value if kind else name})


def apply_field_mappings(
    mapping: SourceMapping,
    data: Any,
    failures: Optional[RuleFailureCounter] = None,
) -> Dict[str, Any]:
    """Construye el documento destino a partir de ``data``.

    Campos ausentes en el origen se omiten. Con ``include_metadata`` se
    agrega ``_metadata`` (sourceId, timestamp, payload original).
    """
    result: Dict[str, Any] = {}
    for item in mapping.mappings:
        value = extract_value(data, item.source_field)
        if value is MISSING:
            logger.debug("[ENGINE] %s not found in data from %s", item.source_field, mapping.source_id)
            continue

        rule = MappingRule(target_name=item.target_field, transform=field_transform(item))
        attribute = apply_rule(item.source_field, value, {item.source_field: rule}, failures)
        if not set_value(result, attribute.name, attribute.value):
            logger.warning(
                "[ENGINE] Cannot set %s for %s: parent is not an object",
                attribute.name,
                mapping.source_id,
            )

    if mapping.include_metadata:
        result["_metadata"] = {
            "sourceId": mapping.source_id,
            "timestamp": isoformat(utcnow()),
            "originalData": copy.deepcopy(data),
        }
    return result
