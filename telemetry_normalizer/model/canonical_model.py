"""CanonicalDataModel - store en memoria de Devices + Relationships.

Responsabilidades:
- Validar en la entrada (``id``/``type`` obligatorios) SIN mutación parcial.
- Inferir tipos de medición ausentes.
- Serializar read-modify-write sobre un mismo device id (lock por clave);
  operaciones sobre ids distintos no se bloquean entre sí.
- Devolver SIEMPRE copias: ningún llamador muta el store.
- Proyecciones: JSON canónico, TOON, NGSI-LD.

Las Relationship son legacy: se guardan por valor y una referencia colgante
(source/target inexistente) se acepta. La integridad referencial NO se
garantiza en esta capa.
"""

from __future__ import annotations

import copy
import logging
import random
import string
import threading
import time
import weakref
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..adapters import LegacyEntityAdapter
from ..core.domain import Device, Entity, Measurement, MeasurementType, Relationship, infer_type
from ..core.domain.storage_record import isoformat, utcnow
from . import exports
from .errors import DeviceValidationError, RelationshipValidationError

logger = logging.getLogger(__name__)

MODEL_VERSION = "2.0.0"
DEFAULT_SOURCE = "telemetry-normalizer"
DEFAULT_NAMESPACE = "urn:ngsi-ld:default"

_ID_ALPHABET = string.ascii_lowercase + string.digits

DeviceLike = Union[Device, Mapping[str, Any]]


class ImportShape(str, Enum):
    """Formas aceptadas por ``from_json``. Se decide UNA vez por payload."""
    SEQUENCE = "sequence"
    ENVELOPE = "envelope"
    LEGACY_ENVELOPE = "legacy_envelope"
    SINGLE_DEVICE = "single_device"
    UNRECOGNIZED = "unrecognized"


def classify_import(payload: Any) -> ImportShape:
    if isinstance(payload, (list, tuple)):
        return ImportShape.SEQUENCE
    if not isinstance(payload, Mapping):
        return ImportShape.UNRECOGNIZED
    if isinstance(payload.get("devices"), (list, tuple)):
        return ImportShape.ENVELOPE
    if isinstance(payload.get("entities"), (list, tuple)):
        return ImportShape.LEGACY_ENVELOPE
    if payload.get("id") and payload.get("type"):
        return ImportShape.SINGLE_DEVICE
    return ImportShape.UNRECOGNIZED


class CanonicalDataModel:
    """Modelo canónico Device/Measurement.

    Args:
        source: valor por defecto de ``metadata.source`` de los devices.
        namespace: prefijo URN para NGSI-LD.
    """

    def __init__(self, source: str = DEFAULT_SOURCE, namespace: str = DEFAULT_NAMESPACE):
        self.version = MODEL_VERSION
        self._devices: Dict[str, Device] = {}
        self._relationships: Dict[str, Relationship] = {}
        self._lock = threading.RLock()
        # la entrada desaparece cuando ningún hilo referencia el lock
        self._key_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

        created = utcnow()
        self._created_at = created
        self._updated_at = created
        self._metadata: Dict[str, Any] = {"source": source, "namespace": namespace}

    # ------------------------------------------------------------------
    # Metadata / timestamps
    # ------------------------------------------------------------------

    @property
    def namespace(self) -> str:
        with self._lock:
            return self._metadata["namespace"]

    @namespace.setter
    def namespace(self, value: str) -> None:
        with self._lock:
            self._metadata["namespace"] = value

    @property
    def source(self) -> str:
        with self._lock:
            return self._metadata["source"]

    @property
    def metadata(self) -> Dict[str, Any]:
        with self._lock:
            result = copy.deepcopy(self._metadata)
            result["created"] = isoformat(self._created_at)
            result["updated"] = isoformat(self._updated_at)
            return result

    def _touch(self) -> str:
        """Avanza ``updated`` (nunca retrocede) y devuelve el ISO aplicado."""
        with self._lock:
            now = utcnow()
            if now > self._updated_at:
                self._updated_at = now
            return isoformat(self._updated_at)

    def _key_lock(self, device_id: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(device_id)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[device_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def _normalize_device(self, device: DeviceLike) -> Device:
        """Valida y construye una copia lista para insertar. No muta nada."""
        if isinstance(device, Device):
            raw = device.to_dict()
        elif isinstance(device, Mapping):
            raw = dict(device)
        else:
            raise DeviceValidationError(f"Device must be a mapping, got {type(device).__name__}")

        if not raw.get("id"):
            raise DeviceValidationError("Device must have an id")
        if not raw.get("type"):
            raise DeviceValidationError(f"Device {raw['id']} must have a type")

        measurements = raw.get("measurements") or []
        if not isinstance(measurements, (list, tuple)):
            raise DeviceValidationError(f"Device {raw['id']} measurements must be a sequence")

        merged: Dict[str, Measurement] = {}
        for item in measurements:
            incoming = item.to_dict() if isinstance(item, Measurement) else item
            if not isinstance(incoming, Mapping) or incoming.get("id") in (None, ""):
                raise DeviceValidationError(f"Device {raw['id']} has a measurement without id")
            key = str(incoming["id"])
            if key in merged:
                _merge_measurement(merged[key], incoming)
            else:
                merged[key] = Measurement.from_dict(copy.deepcopy(dict(incoming)))

        metadata = copy.deepcopy(dict(raw.get("metadata") or {}))
        metadata.setdefault("source", self.source)
        return Device(
            id=str(raw["id"]),
            type=str(raw["type"]),
            measurements=list(merged.values()),
            metadata=metadata,
        )

    def add_device(self, device: DeviceLike) -> str:
        """Inserta o sobrescribe un Device.

        Raises:
            DeviceValidationError: falta ``id``/``type`` o hay una medición
                sin id. El store queda intacto.
        """
        normalized = self._normalize_device(device)
        with self._key_lock(normalized.id):
            normalized.metadata["timestamp"] = self._touch()
            with self._lock:
                self._devices[normalized.id] = normalized
        logger.debug("[MODEL] Device added/updated: %s (type=%s)", normalized.id, normalized.type)
        return normalized.id

    def get_device(self, device_id: str) -> Optional[Device]:
        with self._lock:
            device = self._devices.get(device_id)
            return copy.deepcopy(device) if device is not None else None

    def get_devices_by_type(self, device_type: str) -> List[Device]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._devices.values() if d.type == device_type]

    def get_all_devices(self) -> List[Device]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._devices.values()]

    def remove_device(self, device_id: str) -> bool:
        with self._key_lock(device_id):
            with self._lock:
                removed = self._devices.pop(device_id, None) is not None
            if removed:
                self._touch()
                logger.debug("[MODEL] Device removed: %s", device_id)
        return removed

    def update_measurements(self, device_id: str, measurements: Iterable[Any]) -> bool:
        """Merge por id de medición.

        Ids existentes se actualizan en su posición (los campos presentes
        en la entrada ganan; si la entrada no trae ``type`` se re-infiere),
        ids nuevos se agregan al final en orden de entrada.

        Returns:
            False (y log) si el device no existe. No lo crea.
        """
        incoming_items = []
        for item in measurements:
            incoming = item.to_dict() if isinstance(item, Measurement) else item
            if not isinstance(incoming, Mapping) or incoming.get("id") in (None, ""):
                raise DeviceValidationError(f"Measurement update for {device_id} without id")
            incoming_items.append(copy.deepcopy(dict(incoming)))

        with self._key_lock(device_id):
            with self._lock:
                current = self._devices.get(device_id)
                working = copy.deepcopy(current) if current is not None else None
            if working is None:
                logger.warning("[MODEL] update_measurements: device %s not found", device_id)
                return False

            for incoming in incoming_items:
                existing = working.get_measurement(str(incoming["id"]))
                if existing is None:
                    working.measurements.append(Measurement.from_dict(incoming))
                else:
                    _merge_measurement(existing, incoming)

            working.metadata["timestamp"] = self._touch()
            with self._lock:
                self._devices[device_id] = working

        logger.debug("[MODEL] Updated %d measurements on %s", len(incoming_items), device_id)
        return True

    # ------------------------------------------------------------------
    # Legacy Entity / Relationship
    # ------------------------------------------------------------------

    def add_entity(self, entity: Union[Entity, Mapping[str, Any]]) -> str:
        """Entity legacy → Device (vía adapter) → ``add_device``."""
        return self.add_device(LegacyEntityAdapter.entity_to_device(entity))

    def add_relationship(self, relationship: Union[Relationship, Mapping[str, Any]]) -> str:
        """Agrega una Relationship. Genera id si falta.

        NO verifica que source/target existan en el modelo.

        Raises:
            RelationshipValidationError: falta ``type``, ``source`` o ``target``.
        """
        rel = relationship if isinstance(relationship, Relationship) else Relationship.from_dict(relationship)
        if not rel.type:
            raise RelationshipValidationError("Relationship must have a type")
        if not rel.source or not rel.target:
            raise RelationshipValidationError("Relationship must have source and target")

        stored = copy.deepcopy(rel)
        if not stored.id:
            stored.id = _generate_relationship_id()
        stored.metadata["timestamp"] = self._touch()
        with self._lock:
            self._relationships[stored.id] = stored
        logger.debug("[MODEL] Relationship added: %s (%s -> %s)", stored.id, stored.source, stored.target)
        return stored.id

    def get_relationships(self, entity_id: str, direction: str = "both") -> List[Relationship]:
        """Relaciones donde ``entity_id`` es source, target o cualquiera."""
        if direction not in ("source", "target", "both"):
            raise ValueError(f"direction must be source, target or both: {direction!r}")
        with self._lock:
            result = []
            for rel in self._relationships.values():
                as_source = direction in ("source", "both") and rel.source == entity_id
                as_target = direction in ("target", "both") and rel.target == entity_id
                if as_source or as_target:
                    result.append(copy.deepcopy(rel))
            return result

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def to_json(
        self,
        include_metadata: bool = True,
        device_id: Optional[str] = None,
        include_relationships: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """JSON canónico.

        Con ``device_id``: ese device tal cual (o None si no existe).
        Sin él: ``{version, devices, relationships?, metadata?}``.
        """
        if device_id is not None:
            device = self.get_device(device_id)
            return device.to_dict() if device is not None else None

        with self._lock:
            result: Dict[str, Any] = {
                "version": self.version,
                "devices": [d.to_dict() for d in self._devices.values()],
            }
            if include_relationships and self._relationships:
                result["relationships"] = [r.to_dict() for r in self._relationships.values()]
        if include_metadata:
            result["metadata"] = self.metadata
        return result

    def to_toon(self) -> Dict[str, Any]:
        return exports.to_toon(self.get_all_devices(), self.version, isoformat(utcnow()))

    def to_ngsild(self, context: Optional[exports.ContextValue] = None) -> List[Dict[str, Any]]:
        return exports.to_ngsild(self.get_all_devices(), self.namespace, context)

    def from_json(self, payload: Any) -> List[str]:
        """Importa devices. La forma del payload se clasifica una sola vez.

        Todos los devices se validan antes de insertar ninguno: si alguno es
        inválido se lanza DeviceValidationError y el modelo no cambia.
        Formas no reconocidas son un no-op.

        Returns:
            Ids de los devices importados, en orden.
        """
        shape = classify_import(payload)

        if shape is ImportShape.SEQUENCE:
            devices = [self._normalize_device(item) for item in payload]
        elif shape is ImportShape.ENVELOPE:
            devices = [self._normalize_device(item) for item in payload["devices"]]
        elif shape is ImportShape.LEGACY_ENVELOPE:
            devices = [
                self._normalize_device(LegacyEntityAdapter.entity_to_device(item))
                for item in payload["entities"]
            ]
        elif shape is ImportShape.SINGLE_DEVICE:
            devices = [self._normalize_device(payload)]
        else:
            logger.warning("[MODEL] from_json: unrecognized payload shape, ignoring")
            return []

        relationships: Sequence[Any] = ()
        if shape in (ImportShape.ENVELOPE, ImportShape.LEGACY_ENVELOPE):
            self._merge_metadata(payload.get("metadata"))
            relationships = payload.get("relationships") or ()

        ids = [self.add_device(device) for device in devices]
        for rel in relationships:
            self.add_relationship(rel)
        logger.info(
            "[MODEL] Imported %d devices and %d relationships (shape=%s)",
            len(ids),
            len(relationships),
            shape.value,
        )
        return ids

    def _merge_metadata(self, incoming: Any) -> None:
        if not isinstance(incoming, Mapping):
            return
        with self._lock:
            for key, value in incoming.items():
                # created/updated son propios de esta instancia
                if key in ("created", "updated"):
                    continue
                self._metadata[key] = copy.deepcopy(value)

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            type_count: Dict[str, int] = {}
            total_measurements = 0
            for device in self._devices.values():
                type_count[device.type] = type_count.get(device.type, 0) + 1
                total_measurements += len(device.measurements)
            return {
                "totalDevices": len(self._devices),
                "totalMeasurements": total_measurements,
                "totalRelationships": len(self._relationships),
                "deviceTypes": type_count,
                "created": isoformat(self._created_at),
                "lastUpdated": isoformat(self._updated_at),
            }

    @property
    def updated_at(self) -> datetime:
        with self._lock:
            return self._updated_at

    def clear(self) -> None:
        with self._lock:
            self._devices.clear()
            self._relationships.clear()
        self._touch()
        logger.info("[MODEL] Canonical data model cleared")


def _merge_measurement(existing: Measurement, incoming: Mapping[str, Any]) -> None:
    """Los campos presentes en ``incoming`` pisan a los de ``existing``."""
    if "value" in incoming:
        existing.value = copy.deepcopy(incoming["value"])
    parsed = MeasurementType.parse(incoming["type"]) if incoming.get("type") is not None else None
    existing.type = parsed or infer_type(existing.value)
    if incoming.get("metadata"):
        existing.metadata.update(copy.deepcopy(dict(incoming["metadata"])))


def _generate_relationship_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"rel_{int(time.time() * 1000)}_{suffix}"
