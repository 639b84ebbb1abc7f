"""Proyecciones de exportación del modelo canónico.

- TOON: formato compacto para transporte (``m: [{i, t, v}]``), con el
  timestamp del dispositivo subido a ``ts`` y excluido de ``meta``.
- NGSI-LD: una entidad por dispositivo, cada medición como Property;
  mediciones llamadas ``id``, ``type`` o ``@context`` se exportan como
  ``measurement_<nombre>``.

Funciones puras sobre listas de Devices ya copiadas por el modelo.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.domain import Device, Measurement

logger = logging.getLogger(__name__)

TOON_FORMAT = "TOON"

NGSILD_RESERVED = ("id", "type", "@context")
RESERVED_PREFIX = "measurement_"

ContextValue = Union[str, List[Any], Dict[str, Any]]


def to_toon(devices: Iterable[Device], version: str, ts: str) -> Dict[str, Any]:
    return {
        "format": TOON_FORMAT,
        "version": version,
        "ts": ts,
        "devices": [toon_device(device) for device in devices],
    }


def toon_device(device: Device) -> Dict[str, Any]:
    meta = {k: v for k, v in device.metadata.items() if k != "timestamp"}
    return {
        "id": device.id,
        "type": device.type,
        "ts": device.metadata.get("timestamp"),
        "m": [{"i": m.id, "t": m.type.value, "v": m.value} for m in device.measurements],
        "meta": meta,
    }


def ensure_urn(device_id: str, namespace: str) -> str:
    """``urn:...`` se respeta; cualquier otro id → ``{namespace}:{id}``."""
    if str(device_id).startswith("urn:"):
        return str(device_id)
    return f"{namespace}:{device_id}"


def ngsild_property(measurement: Measurement, device: Device) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": "Property", "value": measurement.value}
    observed_at = measurement.metadata.get("timestamp") or device.metadata.get("timestamp")
    if observed_at:
        prop["observedAt"] = observed_at
    unit_code = measurement.metadata.get("unitCode") or measurement.metadata.get("unit")
    if unit_code:
        prop["unitCode"] = unit_code
    return prop


def ngsild_attribute_name(measurement_id: str) -> str:
    """Mediciones llamadas como una clave reservada de la entidad llevan prefijo."""
    if measurement_id in NGSILD_RESERVED:
        return RESERVED_PREFIX + measurement_id.lstrip("@")
    return measurement_id


def to_ngsild(
    devices: Iterable[Device],
    namespace: str,
    context: Optional[ContextValue] = None,
) -> List[Dict[str, Any]]:
    entities = []
    for device in devices:
        entity: Dict[str, Any] = {
            "id": ensure_urn(device.id, namespace),
            "type": device.type,
            "@context": context if context is not None else namespace,
        }
        for measurement in device.measurements:
            name = ngsild_attribute_name(measurement.id)
            if name != measurement.id:
                logger.warning(
                    "[MODEL] Measurement %s of %s exported as %s (reserved NGSI-LD key)",
                    measurement.id,
                    device.id,
                    name,
                )
            if name in entity:
                logger.warning(
                    "[MODEL] Measurement %s of %s collides with attribute %s, skipped",
                    measurement.id,
                    device.id,
                    name,
                )
                continue
            entity[name] = ngsild_property(measurement, device)
        entities.append(entity)
    return entities
