"""Utilidades compartidas por las variantes de protocolo."""

from __future__ import annotations

import random
import re
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...core.domain import Device, Measurement, MeasurementType, infer_type
from ..context import MappingContext
from ..discovery import DiscoveredDevice, DiscoveredMeasurement
from ..rules import AttributeResult, MappingRule, RuleFailureCounter, apply_rule

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class RuleSet:
    """Reglas configuradas de un mapper + su contador de fallos."""
    rules: Dict[str, MappingRule] = field(default_factory=dict)
    failures: RuleFailureCounter = field(default_factory=RuleFailureCounter)

    def apply(self, name: str, value: Any) -> AttributeResult:
        return apply_rule(name, value, self.rules, self.failures)


@dataclass(frozen=True)
class ProtocolHandler:
    """Capacidades {validate, map, discover} de una variante de protocolo."""
    source_type: str
    validate: Callable[[Any], bool]
    map: Callable[[Any, MappingContext, RuleSet, str], List[Device]]
    discover: Callable[[Any, MappingContext, RuleSet, str], List[DiscoveredDevice]]


def sanitize_identifier(raw: Any) -> str:
    """``ns=2;s=Temperature`` → ``ns_2_s_temperature``.

    Solo alfanuméricos y ``_``, en minúsculas.
    """
    cleaned = _NON_ALNUM.sub("_", str(raw).lower()).strip("_")
    return cleaned or "value"


def generate_device_id(source: str) -> str:
    """Id opaco ``{source}_{epoch_ms}_{random}`` para protocolos sin id natural.

    NO reproducible: dos llamadas con el mismo payload dan ids distintos.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{source}_{int(time.time() * 1000)}_{suffix}"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def extract_metadata(source_data: Any, source_type: str) -> Dict[str, Any]:
    """Metadata base: timestamp, source, quality."""
    payload = source_data if isinstance(source_data, Mapping) else {}
    timestamp = payload.get("timestamp")
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    return {
        "timestamp": timestamp or now_iso(),
        "source": payload.get("source") or source_type,
        "quality": payload.get("quality") or "good",
    }


def build_measurement(
    name: str,
    value: Any,
    rule_set: RuleSet,
    *,
    mtype: Optional[MeasurementType] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Measurement:
    """Aplica la regla del atributo y construye la Measurement.

    El tipo explícito (p.ej. de la tabla dataType de OPC UA) solo se usa si
    la regla no cambió el valor; si lo cambió, se re-infiere.
    """
    result = rule_set.apply(name, value)
    if mtype is None or result.value is not value:
        mtype = infer_type(result.value)
    return Measurement(
        id=sanitize_identifier(result.name),
        value=result.value,
        type=mtype,
        metadata={k: v for k, v in (metadata or {}).items() if v is not None},
    )


def describe_device(device: Device, source_type: str, paths: Dict[str, str]) -> DiscoveredDevice:
    """Descripción estructural genérica de un Device ya mapeado."""
    measurements = [
        DiscoveredMeasurement(
            id=m.id,
            name=paths.get(m.id, m.id).rsplit(".", 1)[-1],
            type=m.type.value,
            source_path=paths.get(m.id, m.id),
            unit=m.metadata.get("unit"),
            description=m.metadata.get("description"),
        )
        for m in device.measurements
    ]
    return DiscoveredDevice(
        id=device.id,
        type=device.type,
        source_type=source_type,
        measurements=measurements,
        metadata={k: v for k, v in device.metadata.items() if k not in ("timestamp", "quality")},
    )
