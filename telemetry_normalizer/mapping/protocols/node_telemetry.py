"""Telemetría basada en nodos (OPC UA).

Formato esperado:
{
    "nodes": {
        "ns=2;s=Temperature": {
            "value": 21.5,
            "dataType": "Double",       # nombre o id numérico de DataType
            "statusCode": "Good",
            "sourceTimestamp": "...",
            "serverTimestamp": "..."
        }
    },
    "deviceType": "Boiler"              # opcional
}

Un mapa de nodos "pelado" (sin la clave ``nodes``) también se acepta.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ...core.domain import Device, MeasurementType
from ..context import MappingContext
from ..discovery import DiscoveredDevice
from .common import (
    ProtocolHandler,
    RuleSet,
    build_measurement,
    describe_device,
    extract_metadata,
    generate_device_id,
    sanitize_identifier,
)

logger = logging.getLogger(__name__)

SOURCE_TYPE = "opcua"
DEFAULT_DEVICE_TYPE = "OPCUA_Device"

_FLOAT, _INT, _BOOL, _STRING = (
    MeasurementType.FLOAT,
    MeasurementType.INT,
    MeasurementType.BOOL,
    MeasurementType.STRING,
)

# Nombres y ids numéricos de los DataType built-in de OPC UA
DATA_TYPE_TABLE: Dict[Any, MeasurementType] = {
    "Float": _FLOAT, 10: _FLOAT,
    "Double": _FLOAT, 11: _FLOAT,
    "SByte": _INT, 2: _INT,
    "Byte": _INT, 3: _INT,
    "Int16": _INT, 4: _INT,
    "UInt16": _INT, 5: _INT,
    "Int32": _INT, 6: _INT,
    "UInt32": _INT, 7: _INT,
    "Int64": _INT, 8: _INT,
    "UInt64": _INT, 9: _INT,
    "Boolean": _BOOL, 1: _BOOL,
    "String": _STRING, 12: _STRING,
    "DateTime": _STRING, 13: _STRING,
    "Guid": _STRING, 14: _STRING,
    "ByteString": _STRING, 15: _STRING,
    "LocalizedText": _STRING, 21: _STRING,
}


def canonical_type(data_type: Any) -> MeasurementType:
    """dataType OPC UA → tipo canónico; no mapeado → unknown."""
    if data_type in DATA_TYPE_TABLE:
        return DATA_TYPE_TABLE[data_type]
    if isinstance(data_type, str):
        text = data_type.strip()
        if text.isdigit() and int(text) in DATA_TYPE_TABLE:
            return DATA_TYPE_TABLE[int(text)]
        for name, mtype in DATA_TYPE_TABLE.items():
            if isinstance(name, str) and name.lower() == text.lower():
                return mtype
    return MeasurementType.UNKNOWN


def _nodes(source_data: Any) -> Optional[Mapping[str, Any]]:
    if not isinstance(source_data, Mapping):
        return None
    nodes = source_data.get("nodes")
    if isinstance(nodes, Mapping):
        return nodes
    bare = {k: v for k, v in source_data.items() if isinstance(v, Mapping) and "value" in v}
    return bare or None


def validate(source_data: Any) -> bool:
    if source_data is None:
        logger.warning("[MAPPER:opcua] No data to validate")
        return False
    return _nodes(source_data) is not None


def _device_id(source_data: Mapping[str, Any], ctx: MappingContext, source_type: str) -> str:
    if ctx.device_id:
        return str(ctx.device_id)
    if source_data.get("deviceId"):
        return str(source_data["deviceId"])
    if ctx.endpoint:
        return f"{source_type}_{sanitize_identifier(ctx.endpoint)}"
    return generate_device_id(ctx.source or source_type)


def map_nodes(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[Device]:
    nodes = _nodes(source_data) or {}
    measurements = []
    for node_id, node in nodes.items():
        if not isinstance(node, Mapping):
            logger.debug("[MAPPER:opcua] Skipping malformed node %s", node_id)
            continue
        data_type = node.get("dataType")
        mtype = canonical_type(data_type) if data_type is not None else None
        measurements.append(
            build_measurement(
                node_id,
                node.get("value"),
                rule_set,
                mtype=mtype,
                metadata={
                    "nodeId": node_id,
                    "dataType": data_type,
                    "statusCode": node.get("statusCode"),
                    "sourceTimestamp": node.get("sourceTimestamp"),
                    "serverTimestamp": node.get("serverTimestamp"),
                },
            )
        )

    metadata = extract_metadata(source_data, source_type)
    if ctx.endpoint:
        metadata["endpoint"] = ctx.endpoint

    device = Device(
        id=_device_id(source_data, ctx, source_type),
        type=ctx.device_type or source_data.get("deviceType") or DEFAULT_DEVICE_TYPE,
        measurements=measurements,
        metadata=metadata,
    )
    logger.debug(
        "[MAPPER:opcua] Device %s with %d measurements", device.id, len(measurements)
    )
    return [device]


def discover(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[DiscoveredDevice]:
    nodes = _nodes(source_data) or {}
    described = []
    for device in map_nodes(source_data, ctx, rule_set, source_type):
        paths = {m.id: f"nodes.{m.metadata.get('nodeId', m.id)}" for m in device.measurements}
        result = describe_device(device, source_type, paths)
        for discovered in result.measurements:
            node_id = discovered.source_path.split(".", 1)[-1]
            node = nodes.get(node_id) or {}
            discovered.name = node_id
            discovered.description = f"OPC UA node {node_id}"
            discovered.details = {"opcua": {"nodeId": node_id, "dataType": node.get("dataType")}}
        described.append(result)
    return described


HANDLER = ProtocolHandler(
    source_type=SOURCE_TYPE,
    validate=validate,
    map=map_nodes,
    discover=discover,
)
