"""Modelo legacy Entity/Relationship.

Esquema predecesor del modelo Device/Measurement. Se conserva solo para
compatibilidad: los Entity se convierten a Device al entrar al modelo
(ver ``adapters.legacy_entity``) y no se mantienen como modelo paralelo.

Las Relationship referencian ids por valor. Una referencia colgante
(source/target que no existe en el modelo) se acepta sin validar:
la integridad referencial NO se garantiza en esta capa.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass
class Entity:
    id: str
    type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entity":
        return cls(
            id=data.get("id"),
            type=data.get("type"),
            attributes=copy.deepcopy(dict(data.get("attributes") or {})),
            metadata=copy.deepcopy(dict(data.get("metadata") or {})),
            source=data.get("source"),
        )


@dataclass
class Relationship:
    id: Optional[str]
    type: str
    source: str
    target: str
    properties: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Relationship":
        return cls(
            id=data.get("id"),
            type=data.get("type"),
            source=data.get("source"),
            target=data.get("target"),
            properties=copy.deepcopy(dict(data.get("properties") or {})),
            metadata=copy.deepcopy(dict(data.get("metadata") or {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "target": self.target,
            "properties": copy.deepcopy(self.properties),
            "metadata": copy.deepcopy(self.metadata),
        }
