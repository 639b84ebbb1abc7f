"""Telemetría basada en registros (Modbus).

Formato esperado:
{
    "unitId": 3,
    "registers": {"holding_temperature": 215, "coil_pump": true},
    "registerAddresses": {"holding_temperature": 40001},   # opcional
    "deviceType": "Pump"                                   # opcional
}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from ...core.domain import Device
from ..context import MappingContext
from ..discovery import DiscoveredDevice
from .common import (
    ProtocolHandler,
    RuleSet,
    build_measurement,
    describe_device,
    extract_metadata,
)

logger = logging.getLogger(__name__)

SOURCE_TYPE = "modbus"
DEFAULT_DEVICE_TYPE = "Modbus_Device"

# Orden de evaluación: el primer keyword que aparece en el nombre gana
_KIND_KEYWORDS = (
    ("coil", "coil"),
    ("digital", "coil"),
    ("holding", "holding"),
    ("input", "input"),
    ("discrete", "discrete"),
)


def register_kind(name: str) -> str:
    """Clasifica el registro por substring del nombre. Default: holding."""
    lowered = str(name).lower()
    for keyword, kind in _KIND_KEYWORDS:
        if keyword in lowered:
            return kind
    return "holding"


def validate(source_data: Any) -> bool:
    if not isinstance(source_data, Mapping):
        logger.warning("[MAPPER:modbus] No data to validate")
        return False
    return isinstance(source_data.get("registers"), Mapping)


def device_id_for(source_data: Mapping[str, Any], ctx: MappingContext) -> str:
    """``modbus_unit{unitId}_{source_id}``: determinístico para (unidad, fuente)."""
    if ctx.device_id:
        return str(ctx.device_id)
    unit_id = source_data.get("unitId") or 1
    return f"modbus_unit{unit_id}_{ctx.source_id or 'device'}"


def _registers(source_data: Any) -> Mapping[str, Any]:
    if not isinstance(source_data, Mapping):
        return {}
    registers = source_data.get("registers")
    return registers if isinstance(registers, Mapping) else {}


def map_registers(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[Device]:
    registers = _registers(source_data)
    addresses = source_data.get("registerAddresses") or {}

    measurements = []
    kinds: Dict[str, str] = {}
    for name, raw in registers.items():
        kind = register_kind(name)
        measurement = build_measurement(
            name,
            raw,
            rule_set,
            metadata={"registerType": kind, "address": addresses.get(name)},
        )
        kinds[measurement.id] = kind
        measurements.append(measurement)

    metadata = extract_metadata(source_data, source_type)
    metadata.update(
        {
            "unitId": source_data.get("unitId"),
            "host": ctx.host,
            "port": ctx.port,
            "registerTypes": kinds,
        }
    )

    device = Device(
        id=device_id_for(source_data, ctx),
        type=source_data.get("deviceType") or ctx.device_type or DEFAULT_DEVICE_TYPE,
        measurements=measurements,
        metadata=metadata,
    )
    logger.debug(
        "[MAPPER:modbus] Device %s with %d measurements", device.id, len(measurements)
    )
    return [device]


def discover(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[DiscoveredDevice]:
    registers = _registers(source_data)
    addresses = source_data.get("registerAddresses") or {}
    described = []
    for device in map_registers(source_data, ctx, rule_set, source_type):
        names = dict(zip((m.id for m in device.measurements), registers.keys()))
        result = describe_device(
            device,
            source_type,
            {mid: f"registers.{name}" for mid, name in names.items()},
        )
        for discovered in result.measurements:
            name = names.get(discovered.id, discovered.id)
            kind = register_kind(name)
            discovered.name = name
            discovered.description = f"Modbus {kind} register"
            discovered.details = {"modbus": {"registerType": kind, "address": addresses.get(name)}}
        result.metadata = {"unitId": source_data.get("unitId"), "host": ctx.host, "port": ctx.port}
        described.append(result)
    return described


HANDLER = ProtocolHandler(
    source_type=SOURCE_TYPE,
    validate=validate,
    map=map_registers,
    discover=discover,
)
