"""Contrato de mapeo por protocolo.

Un único ``Mapper`` con dispatch explícito por ``MapperKind`` sobre una
tabla de handlers {validate, map, discover}. No hay subclase por protocolo.

Garantías:
- ``validate`` y ``map`` NUNCA lanzan excepción: un payload malo produce
  lista vacía, se loguea y se cuenta (stats + prometheus).
- ``map`` no tiene efectos secundarios. ``discover`` solo escribe en el
  cache de descubiertos de ESTA instancia.
- Los ids generados (protocolos sin id natural) no son reproducibles.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.domain import Device
from ..metrics import MAPPING_RESULTS
from .context import ContextLike, as_context
from .discovery import DiscoveredDevice, DiscoveryCache
from .protocols import asset_submodel, generic, node_telemetry, register_telemetry, topic_payload
from .protocols.common import ProtocolHandler, RuleSet
from .rules import MappingRule, parse_rules

logger = logging.getLogger(__name__)


class MapperKind(str, Enum):
    NODE_TELEMETRY = "node_telemetry"
    REGISTER_TELEMETRY = "register_telemetry"
    TOPIC_PAYLOAD = "topic_payload"
    ASSET_SUBMODEL = "asset_submodel"
    GENERIC = "generic"


HANDLERS: Dict[MapperKind, ProtocolHandler] = {
    MapperKind.NODE_TELEMETRY: node_telemetry.HANDLER,
    MapperKind.REGISTER_TELEMETRY: register_telemetry.HANDLER,
    MapperKind.TOPIC_PAYLOAD: topic_payload.HANDLER,
    MapperKind.ASSET_SUBMODEL: asset_submodel.HANDLER,
    MapperKind.GENERIC: generic.HANDLER,
}


@dataclass
class MapperStats:
    """Contadores de mapeo de una instancia."""

    mapped: int = 0
    invalid: int = 0
    failed: int = 0
    devices: int = 0
    last_mapped_at: float = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "mapped": self.mapped,
            "invalid": self.invalid,
            "failed": self.failed,
            "devices": self.devices,
            "last_mapped_at": self.last_mapped_at,
            "started_at": self.started_at.isoformat(),
        }


class Mapper:
    """Traductor de payloads de un protocolo al modelo canónico.

    Args:
        kind: variante de protocolo.
        rules: reglas de atributos (dict de configuración o MappingRule).
        source_type: etiqueta de la fuente (``opcua``, ``s7``...). Por
            defecto la del handler.
    """

    def __init__(
        self,
        kind: MapperKind,
        rules: Optional[Mapping[str, Any]] = None,
        source_type: Optional[str] = None,
    ):
        self.kind = MapperKind(kind)
        self._handler = HANDLERS[self.kind]
        self.source_type = (source_type or self._handler.source_type).lower()
        self._rule_set = RuleSet(rules=parse_rules(rules))
        self._discovered = DiscoveryCache()
        self._stats = MapperStats()
        self._stats_lock = threading.Lock()

    @property
    def rules(self) -> Dict[str, MappingRule]:
        return dict(self._rule_set.rules)

    def set_rules(self, rules: Optional[Mapping[str, Any]]) -> None:
        self._rule_set.rules = parse_rules(rules)

    def validate(self, source_data: Any) -> bool:
        try:
            return bool(self._handler.validate(source_data))
        except Exception:
            logger.exception("[MAPPER:%s] validate failed", self.source_type)
            return False

    def map(self, source_data: Any, context: ContextLike = None) -> List[Device]:
        """Payload → Devices. Lista vacía si el payload no es válido."""
        if not self.validate(source_data):
            self._count("invalid")
            return []

        try:
            devices = self._handler.map(source_data, as_context(context), self._rule_set, self.source_type)
        except Exception:
            logger.exception("[MAPPER:%s] Mapping failed", self.source_type)
            self._count("failed")
            return []

        self._count("mapped", devices=len(devices))
        return devices

    def discover(self, source_data: Any, context: ContextLike = None) -> List[DiscoveredDevice]:
        """Describe la estructura del/los dispositivos sin tocar el modelo."""
        if not self.validate(source_data):
            return []

        try:
            discovered = self._handler.discover(
                source_data, as_context(context), self._rule_set, self.source_type
            )
        except Exception:
            logger.exception("[MAPPER:%s] Discovery failed", self.source_type)
            self._count("failed")
            return []

        for device in discovered:
            self._discovered.put(device)
            logger.info(
                "[MAPPER:%s] Device discovered: %s with %d measurements",
                self.source_type,
                device.id,
                len(device.measurements),
            )
        return discovered

    def discovered_devices(self) -> List[DiscoveredDevice]:
        return self._discovered.list()

    def get_discovered(self, device_id: str) -> Optional[DiscoveredDevice]:
        return self._discovered.get(device_id)

    def clear_discovered(self) -> int:
        return self._discovered.clear()

    def get_statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = self._stats.to_dict()
        return {
            "sourceType": self.source_type,
            "kind": self.kind.value,
            "mappingRulesCount": len(self._rule_set.rules),
            "ruleFailures": self._rule_set.failures.total,
            "ruleFailuresByTransform": self._rule_set.failures.to_dict(),
            "discoveredDevices": len(self._discovered),
            "stats": stats,
        }

    def _count(self, status: str, devices: int = 0) -> None:
        MAPPING_RESULTS.labels(source_type=self.source_type, status=status).inc()
        with self._stats_lock:
            setattr(self._stats, status, getattr(self._stats, status) + 1)
            self._stats.devices += devices
            if status == "mapped":
                self._stats.last_mapped_at = time.time()
