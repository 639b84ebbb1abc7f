"""LegacyEntityAdapter - puente de un solo sentido Entity (legacy) → Device.

El esquema Entity/Relationship es el predecesor del modelo Device/Measurement.
Solo se convierte hacia el modelo canónico: no existe la conversión inversa
ni se mantiene un modelo Entity paralelo.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, Union

from ..core.domain import Device, Entity, Measurement, MeasurementType, infer_type


class LegacyEntityAdapter:
    """Adapter unidireccional: Entity → Device."""

    @staticmethod
    def attribute_to_measurement(name: str, attribute: Any) -> Measurement:
        """Convierte un atributo legacy a Measurement.

        Args:
            name: nombre del atributo (pasa a ser el id de la medición)
            attribute: valor crudo o dict con forma ``{value, type?, ...}``

        Returns:
            Measurement; las claves restantes del dict van a ``metadata``.

        Example:
            >>> m = LegacyEntityAdapter.attribute_to_measurement(
            ...     "temperature", {"value": 21.5, "unitCode": "CEL"})
            >>> m.type.value, m.metadata
            ('float', {'unitCode': 'CEL'})
        """
        if isinstance(attribute, Mapping) and "value" in attribute:
            rest = {k: copy.deepcopy(v) for k, v in attribute.items() if k not in ("value", "type")}
            value = copy.deepcopy(attribute["value"])
            mtype = MeasurementType.parse(attribute.get("type")) if attribute.get("type") else None
            return Measurement(id=str(name), value=value, type=mtype or infer_type(value), metadata=rest)

        value = copy.deepcopy(attribute)
        return Measurement(id=str(name), value=value, type=infer_type(value))

    @classmethod
    def entity_to_device(cls, entity: Union[Entity, Mapping[str, Any]]) -> Device:
        """Convierte Entity (legacy) a Device (canónico).

        No valida ``id``/``type``: el modelo lo hace al insertar el Device.
        """
        if not isinstance(entity, Entity):
            entity = Entity.from_dict(entity)

        metadata = copy.deepcopy(entity.metadata)
        if entity.source and "source" not in metadata:
            metadata["source"] = entity.source

        return Device(
            id=entity.id,
            type=entity.type,
            measurements=[
                cls.attribute_to_measurement(name, attribute)
                for name, attribute in entity.attributes.items()
            ],
            metadata=metadata,
        )
