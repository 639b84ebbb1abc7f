"""Device - entidad canónica del modelo unificado.

Un Device representa una fuente física o lógica con su conjunto de
Measurements. Todos los mappers de protocolo producen Devices.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .measurement import Measurement


@dataclass
class Device:
    id: str
    type: str
    measurements: List[Measurement] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        """Construye un Device desde el formato wire.

        No valida ``id``/``type``: eso lo hace el modelo al insertar.
        """
        measurements = [
            m if isinstance(m, Measurement) else Measurement.from_dict(m)
            for m in (data.get("measurements") or [])
        ]
        return cls(
            id=data.get("id"),
            type=data.get("type"),
            measurements=measurements,
            metadata=copy.deepcopy(dict(data.get("metadata") or {})),
        )

    def get_measurement(self, measurement_id: str) -> Optional[Measurement]:
        for measurement in self.measurements:
            if measurement.id == measurement_id:
                return measurement
        return None

    @property
    def measurement_ids(self) -> List[str]:
        return [m.id for m in self.measurements]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "measurements": [m.to_dict() for m in self.measurements],
            "metadata": copy.deepcopy(self.metadata),
        }
