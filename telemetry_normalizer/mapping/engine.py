"""MappingEngine - fachada sobre el registro de mappers + modelo canónico.

Es la superficie que consume la capa HTTP (fuera de este paquete):
listar/consultar devices, exportar en los tres formatos y estadísticas.
También guarda los mapeos de campos por fuente (``add_mapping`` /
``apply_mapping``, ver ``field_mapping``).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.domain import Device
from ..core.domain.storage_record import isoformat, utcnow
from ..model import CanonicalDataModel, ModelValidationError
from ..model.canonical_model import DEFAULT_NAMESPACE
from .context import ContextLike, as_context
from .field_mapping import SourceMapping, apply_field_mappings, validate_mapping
from .mapper import Mapper, MapperKind
from .rules import RuleFailureCounter

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TYPES: Dict[str, MapperKind] = {
    "opcua": MapperKind.NODE_TELEMETRY,
    "modbus": MapperKind.REGISTER_TELEMETRY,
    "aas": MapperKind.ASSET_SUBMODEL,
    "asset-administration-shell": MapperKind.ASSET_SUBMODEL,
    "mqtt": MapperKind.TOPIC_PAYLOAD,
    "generic": MapperKind.GENERIC,
    "http": MapperKind.GENERIC,
    "s7": MapperKind.GENERIC,
    "bacnet": MapperKind.GENERIC,
    "fins": MapperKind.GENERIC,
    "melsec": MapperKind.GENERIC,
    "cip": MapperKind.GENERIC,
    "serial": MapperKind.GENERIC,
}


class MappingEngine:
    """Registro de mappers por source type + modelo canónico compartido.

    Args:
        namespace: prefijo URN para la exportación NGSI-LD.
        model: modelo a usar; por defecto uno nuevo.
        rules: reglas por source type, ``{"opcua": {"Temp": {...}}}``.
    """

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        model: Optional[CanonicalDataModel] = None,
        rules: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self.config: Dict[str, Any] = {"namespace": namespace}
        self.model = model or CanonicalDataModel(namespace=namespace)
        self._mappers: Dict[str, Mapper] = {}
        self._field_mappings: Dict[str, SourceMapping] = {}
        self.field_failures = RuleFailureCounter()
        self._lock = threading.Lock()
        self._stats = {
            "totalMappings": 0,
            "successfulMappings": 0,
            "failedMappings": 0,
            "lastMappingTime": None,
        }

        for source_type, kind in DEFAULT_SOURCE_TYPES.items():
            source_rules = (rules or {}).get(source_type)
            self.register_mapper(source_type, Mapper(kind, rules=source_rules, source_type=source_type))
        logger.info("[ENGINE] Mapping engine initialized with %d mappers", len(self._mappers))

    # ------------------------------------------------------------------
    # Registro
    # ------------------------------------------------------------------

    def register_mapper(self, source_type: str, mapper: Mapper) -> None:
        if not isinstance(mapper, Mapper):
            raise TypeError(f"mapper must be a Mapper, got {type(mapper).__name__}")
        with self._lock:
            self._mappers[source_type.lower()] = mapper
        logger.debug("[ENGINE] Mapper registered for source type: %s", source_type)

    def get_mapper(self, source_type: str) -> Mapper:
        """Mapper del source type; si no hay uno específico, el genérico."""
        with self._lock:
            mapper = self._mappers.get((source_type or "generic").lower())
            if mapper is None:
                logger.warning(
                    "[ENGINE] No specific mapper found for %s, using generic mapper", source_type
                )
                mapper = self._mappers["generic"]
            return mapper

    @property
    def registered_source_types(self) -> List[str]:
        with self._lock:
            return list(self._mappers)

    # ------------------------------------------------------------------
    # Mapeo
    # ------------------------------------------------------------------

    def map_data(
        self,
        source_data: Any,
        context: ContextLike = None,
        source_type: Optional[str] = None,
    ) -> List[str]:
        """Mapea un payload y agrega los devices al modelo.

        Returns:
            Ids de los devices agregados (lista vacía si el payload no
            produjo devices).

        Raises:
            ModelValidationError: un device mapeado no pasó la validación
                del modelo (queda contado como fallido).
        """
        started = time.monotonic()
        if source_type is None:
            hint = context.get("sourceType") if isinstance(context, Mapping) else None
            if hint is None and isinstance(source_data, Mapping):
                hint = source_data.get("type")
            source_type = str(hint or "generic")

        mapper = self.get_mapper(source_type)
        self._count("totalMappings")

        devices = mapper.map(source_data, as_context(context))
        if not devices:
            logger.warning("[ENGINE] Mapper returned no devices for source type: %s", source_type)
            return []

        try:
            device_ids = [self.model.add_device(device) for device in devices]
        except ModelValidationError:
            self._count("failedMappings")
            logger.exception("[ENGINE] Mapped device rejected by the model (source=%s)", source_type)
            raise

        self._count("successfulMappings", last_mapping=True)
        logger.debug(
            "[ENGINE] Mapped %d devices from %s in %.1fms",
            len(device_ids),
            source_type,
            (time.monotonic() - started) * 1000,
        )
        return device_ids

    def map_batch(self, items: Iterable[Mapping[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        """Mapea ``[{sourceData, context, sourceType?}]``.

        Un item que falla no interrumpe el resto del batch.
        """
        results: Dict[str, List[Dict[str, Any]]] = {"successful": [], "failed": []}
        for item in items:
            context = item.get("context")
            try:
                device_ids = self.map_data(
                    item.get("sourceData", item.get("source_data")),
                    context,
                    item.get("sourceType", item.get("source_type")),
                )
            except ModelValidationError as e:
                results["failed"].append({"context": context, "error": str(e)})
                continue
            results["successful"].append({"context": context, "deviceIds": device_ids})

        logger.info(
            "[ENGINE] Batch mapping completed: %d successful, %d failed",
            len(results["successful"]),
            len(results["failed"]),
        )
        return results

    # ------------------------------------------------------------------
    # Mapeos de campos por fuente
    # ------------------------------------------------------------------

    @staticmethod
    def validate_mapping(mapping_config: Mapping[str, Any]) -> bool:
        """Raises FieldMappingError si falta sourceId, target.type o mappings."""
        return validate_mapping(mapping_config)

    def add_mapping(self, mapping_config: Mapping[str, Any]) -> SourceMapping:
        """Registra (o reemplaza) el mapeo de campos de una fuente.

        Raises:
            FieldMappingError: configuración inválida; no se registra nada.
        """
        mapping = SourceMapping.from_config(mapping_config)
        with self._lock:
            self._field_mappings[mapping.source_id] = mapping
        logger.info(
            "[ENGINE] Added mapping for source '%s' -> %s (%d fields)",
            mapping.source_id,
            mapping.target_type,
            len(mapping.mappings),
        )
        return mapping

    def get_mapping_for_source(self, source_id: str) -> Optional[SourceMapping]:
        with self._lock:
            return self._field_mappings.get(source_id)

    def remove_mapping(self, source_id: str) -> bool:
        with self._lock:
            return self._field_mappings.pop(source_id, None) is not None

    def apply_mapping(self, source_id: str, data: Any) -> Optional[Dict[str, Any]]:
        """Aplica el mapeo de campos de ``source_id`` a ``data``.

        Returns:
            Documento destino, o None si la fuente no tiene mapeo.
        """
        mapping = self.get_mapping_for_source(source_id)
        if mapping is None:
            logger.debug("[ENGINE] No mapping found for source '%s'", source_id)
            return None
        result = apply_field_mappings(mapping, data, self.field_failures)
        logger.debug("[ENGINE] Mapping applied for source '%s'", source_id)
        return result

    def _count(self, key: str, last_mapping: bool = False) -> None:
        with self._lock:
            self._stats[key] += 1
            if last_mapping:
                self._stats["lastMappingTime"] = isoformat(utcnow())

    # ------------------------------------------------------------------
    # Superficie externa
    # ------------------------------------------------------------------

    def list_devices(self) -> List[Device]:
        return self.model.get_all_devices()

    def get_device(self, device_id: str) -> Optional[Device]:
        return self.model.get_device(device_id)

    def get_devices_by_type(self, device_type: str) -> List[Device]:
        return self.model.get_devices_by_type(device_type)

    def remove_device(self, device_id: str) -> bool:
        return self.model.remove_device(device_id)

    def export_canonical_json(self, options: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        options = options or {}
        return self.model.to_json(
            include_metadata=options.get("includeMetadata", options.get("include_metadata", True)),
            device_id=options.get("deviceId", options.get("device_id")),
        )

    def export_linked_data(self, options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return self.model.to_ngsild(context=(options or {}).get("context"))

    def export_compact_format(self, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self.model.to_toon()

    def get_mapping_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            mappers = dict(self._mappers)
            stats["fieldMappings"] = sorted(self._field_mappings)
        stats["fieldMappingFailures"] = self.field_failures.to_dict()
        stats["dataModel"] = self.model.get_stats()
        stats["registeredMappers"] = list(mappers)
        stats["mappers"] = {name: mapper.get_statistics() for name, mapper in mappers.items()}
        return stats

    def clear_all(self) -> None:
        self.model.clear()
        logger.info("[ENGINE] Mapping engine data model cleared")

    def update_config(self, config: Mapping[str, Any]) -> None:
        """Actualiza configuración: ``namespace``, ``rules`` por source type y
        ``mappings`` (mapeos de campos por fuente).

        Raises:
            FieldMappingError: algún mapeo es inválido; se valida todo
                antes de aplicar cambios.
        """
        field_mappings = [SourceMapping.from_config(raw) for raw in config.get("mappings") or []]
        self.config.update(config)
        if config.get("namespace"):
            self.model.namespace = config["namespace"]
        for source_type, source_rules in (config.get("rules") or {}).items():
            with self._lock:
                mapper = self._mappers.get(source_type.lower())
            if mapper is None:
                logger.warning("[ENGINE] Rules for unregistered source type ignored: %s", source_type)
                continue
            mapper.set_rules(source_rules)
        with self._lock:
            for mapping in field_mappings:
                self._field_mappings[mapping.source_id] = mapping
        logger.info("[ENGINE] Mapping engine configuration updated")
