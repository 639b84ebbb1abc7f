"""Fuentes clave-valor sin mapper específico (http, s7, bacnet, ...).

Cada clave de primer nivel (menos ``timestamp``, ``source`` y ``type``) es
una medición con el valor crudo.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping

from ...core.domain import Device
from ..context import MappingContext
from ..discovery import DiscoveredDevice
from .common import (
    ProtocolHandler,
    RuleSet,
    build_measurement,
    describe_device,
    extract_metadata,
    generate_device_id,
)

logger = logging.getLogger(__name__)

SOURCE_TYPE = "generic"
SKIPPED_KEYS = frozenset({"timestamp", "source", "type"})


def validate(source_data: Any) -> bool:
    if source_data is None:
        logger.warning("[MAPPER:generic] No data to validate")
        return False
    return isinstance(source_data, Mapping)


def device_type_for(source_data: Mapping[str, Any], ctx: MappingContext, source_type: str) -> str:
    return (
        source_data.get("type")
        or source_data.get("deviceType")
        or ctx.device_type
        or f"{source_type.upper()}_Device"
    )


def device_id_for(source_data: Mapping[str, Any], ctx: MappingContext, source_type: str) -> str:
    explicit = source_data.get("id") or source_data.get("deviceId") or ctx.device_id
    if explicit:
        return str(explicit)
    return generate_device_id(ctx.source or source_type)


def map_values(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[Device]:
    measurements = [
        build_measurement(key, value, rule_set)
        for key, value in source_data.items()
        if key not in SKIPPED_KEYS
    ]
    device = Device(
        id=device_id_for(source_data, ctx, source_type),
        type=str(device_type_for(source_data, ctx, source_type)),
        measurements=measurements,
        metadata=extract_metadata(source_data, source_type),
    )
    logger.debug(
        "[MAPPER:%s] Device %s with %d measurements", source_type, device.id, len(measurements)
    )
    return [device]


def discover(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[DiscoveredDevice]:
    keys = [key for key in source_data if key not in SKIPPED_KEYS]
    described = []
    for device in map_values(source_data, ctx, rule_set, source_type):
        paths = dict(zip((m.id for m in device.measurements), (str(k) for k in keys)))
        described.append(describe_device(device, source_type, paths))
    return described


HANDLER = ProtocolHandler(
    source_type=SOURCE_TYPE,
    validate=validate,
    map=map_values,
    discover=discover,
)
