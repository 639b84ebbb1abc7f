"""Telemetría topic/payload (MQTT).

Formato esperado:
{
    "topic": "plant/line1/sensor7",
    "payload": {"temp": 21.5, "unit": "C"} | "21.5" | '{"temp": 21.5}',
    "qos": 1
}

El payload string se intenta decodificar como JSON; si falla se trata como
valor opaco. Los objetos se aplanan recursivamente (``a.b`` → ``a_b``).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, List, Mapping, Tuple

from ...core.domain import Device, Measurement
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

SOURCE_TYPE = "mqtt"
DEFAULT_DEVICE_TYPE = "MQTTDevice"
RESERVED_KEYS = frozenset({"timestamp", "id", "type"})


def decode_payload(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return payload
    return payload


def flatten(payload: Mapping[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
    """Recorre el objeto y devuelve (path, hoja). Las listas son hojas."""
    for key, value in payload.items():
        if not prefix and key in RESERVED_KEYS:
            continue
        path = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            yield from flatten(value, path)
        else:
            yield path, value


def validate(source_data: Any) -> bool:
    if not isinstance(source_data, Mapping):
        logger.warning("[MAPPER:mqtt] No data to validate")
        return False
    return "payload" in source_data


def _topic(source_data: Mapping[str, Any], ctx: MappingContext) -> str:
    return str(source_data.get("topic") or ctx.topic or "")


def device_type_for(payload: Any, topic: str, ctx: MappingContext) -> str:
    if isinstance(payload, Mapping) and payload.get("type"):
        return str(payload["type"])
    if ctx.device_type:
        return str(ctx.device_type)
    if topic:
        return f"MQTT_{topic.split('/')[0]}"
    return DEFAULT_DEVICE_TYPE


def device_id_for(payload: Any, topic: str, ctx: MappingContext) -> str:
    if isinstance(payload, Mapping) and payload.get("id"):
        return str(payload["id"])
    if ctx.device_id:
        return str(ctx.device_id)
    if topic:
        return sanitize_identifier(topic)
    return generate_device_id(ctx.source or SOURCE_TYPE)


def _measurements(payload: Any, rule_set: RuleSet) -> List[Measurement]:
    if isinstance(payload, Mapping):
        return [build_measurement(path, value, rule_set) for path, value in flatten(payload)]
    return [build_measurement("value", payload, rule_set)]


def map_message(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[Device]:
    payload = decode_payload(source_data.get("payload"))
    topic = _topic(source_data, ctx)

    metadata = extract_metadata(source_data, source_type)
    if isinstance(payload, Mapping) and payload.get("timestamp"):
        metadata["timestamp"] = payload["timestamp"]
    metadata["topic"] = topic or None
    metadata["qos"] = source_data.get("qos")

    device = Device(
        id=device_id_for(payload, topic, ctx),
        type=device_type_for(payload, topic, ctx),
        measurements=_measurements(payload, rule_set),
        metadata=metadata,
    )
    logger.debug(
        "[MAPPER:mqtt] Device %s from topic=%s with %d measurements",
        device.id,
        topic,
        len(device.measurements),
    )
    return [device]


def discover(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[DiscoveredDevice]:
    payload = decode_payload(source_data.get("payload"))
    if isinstance(payload, Mapping):
        paths = [path for path, _ in flatten(payload)]
    else:
        paths = ["value"]

    described = []
    for device in map_message(source_data, ctx, rule_set, source_type):
        by_id = dict(zip((m.id for m in device.measurements), paths))
        result = describe_device(
            device, source_type, {mid: f"payload.{path}" for mid, path in by_id.items()}
        )
        for discovered in result.measurements:
            discovered.name = by_id.get(discovered.id, discovered.id)
            discovered.description = f"MQTT value on {device.metadata.get('topic')}"
        described.append(result)
    return described


HANDLER = ProtocolHandler(
    source_type=SOURCE_TYPE,
    validate=validate,
    map=map_message,
    discover=discover,
)
