"""Asset Administration Shell (AAS): un Device por submodelo.

Formato esperado:
{
    "apiVersion": "v3",
    "submodels": {
        "TechnicalData": {
            "id": "urn:example:sm:1",
            "idShort": "TechnicalData",
            "shellId": "urn:example:aas:1",
            "elements": {
                "MaxTemperature": {"modelType": "Property", "value": 90, "valueType": "xs:int"},
                "Manual": {"modelType": "File", "contentType": "application/pdf", "value": "/m.pdf"}
            }
        }
    }
}

Cada elemento se convierte en una medición de tipo ``object`` cuya forma
depende de ``modelType``. Los ``Operation`` no son atributos y se omiten.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...core.domain import Device, Measurement, MeasurementType
from ..context import MappingContext
from ..discovery import DiscoveredDevice
from .common import (
    ProtocolHandler,
    RuleSet,
    describe_device,
    extract_metadata,
    sanitize_identifier,
)

logger = logging.getLogger(__name__)

SOURCE_TYPE = "aas"
DEFAULT_DEVICE_TYPE = "AASSubmodel"


def _property(element: Mapping[str, Any], value: Any) -> Dict[str, Any]:
    return {"value": value, "valueType": element.get("valueType"), "description": element.get("description")}


def _multi_language(element: Mapping[str, Any], value: Any) -> Dict[str, Any]:
    return {"value": value, "description": element.get("description")}


def _range(element: Mapping[str, Any], value: Any) -> Dict[str, Any]:
    return {
        "min": element.get("min"),
        "max": element.get("max"),
        "valueType": element.get("valueType"),
        "description": element.get("description"),
    }


def _file(element: Mapping[str, Any], value: Any) -> Dict[str, Any]:
    return {"contentType": element.get("contentType"), "value": value, "description": element.get("description")}


def _collection(element: Mapping[str, Any], value: Any) -> Dict[str, Any]:
    return {"elements": element.get("elements") or [], "description": element.get("description")}


ELEMENT_SHAPES: Dict[str, Callable[[Mapping[str, Any], Any], Dict[str, Any]]] = {
    "Property": _property,
    "MultiLanguageProperty": _multi_language,
    "Range": _range,
    "File": _file,
    "ReferenceElement": _multi_language,
    "SubmodelElementCollection": _collection,
}


def shape_element(id_short: str, element: Mapping[str, Any], rule_set: RuleSet) -> Optional[Measurement]:
    """Elemento de submodelo → Measurement(object). None para Operation."""
    model_type = element.get("modelType")
    if model_type == "Operation":
        logger.debug("[MAPPER:aas] Skipping Operation element: %s", id_short)
        return None

    result = rule_set.apply(id_short, element.get("value"))
    shaper = ELEMENT_SHAPES.get(model_type)
    if shaper is None:
        logger.warning("[MAPPER:aas] Unknown AAS element type: %s", model_type)
        shaped = {"value": result.value, "modelType": model_type}
    else:
        shaped = shaper(element, result.value)

    return Measurement(
        id=sanitize_identifier(result.name),
        value=shaped,
        type=MeasurementType.OBJECT,
        metadata={"idShort": id_short, "modelType": model_type},
    )


def validate(source_data: Any) -> bool:
    if not isinstance(source_data, Mapping):
        logger.warning("[MAPPER:aas] No data to validate")
        return False
    return isinstance(source_data.get("submodels"), Mapping)


def _submodels(source_data: Any) -> Mapping[str, Any]:
    if not isinstance(source_data, Mapping):
        return {}
    submodels = source_data.get("submodels")
    return submodels if isinstance(submodels, Mapping) else {}


def map_submodel(
    id_short: str,
    submodel: Mapping[str, Any],
    source_data: Mapping[str, Any],
    ctx: MappingContext,
    rule_set: RuleSet,
    source_type: str,
) -> Device:
    measurements = []
    for element_id, element in (submodel.get("elements") or {}).items():
        if not isinstance(element, Mapping):
            logger.debug("[MAPPER:aas] Skipping malformed element %s", element_id)
            continue
        measurement = shape_element(element_id, element, rule_set)
        if measurement is not None:
            measurements.append(measurement)

    metadata = extract_metadata(source_data, source_type)
    metadata.update(
        {
            "submodelId": submodel.get("id"),
            "submodelIdShort": submodel.get("idShort") or id_short,
            "shellId": submodel.get("shellId"),
            "apiVersion": source_data.get("apiVersion"),
        }
    )
    return Device(
        id=f"aas_{submodel.get('id') or id_short}",
        type=f"AAS_{id_short}" if id_short else DEFAULT_DEVICE_TYPE,
        measurements=measurements,
        metadata=metadata,
    )


def map_shell(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[Device]:
    devices = []
    for id_short, submodel in _submodels(source_data).items():
        if not isinstance(submodel, Mapping):
            logger.warning("[MAPPER:aas] Skipping malformed submodel %s", id_short)
            continue
        devices.append(map_submodel(id_short, submodel, source_data, ctx, rule_set, source_type))
    logger.debug("[MAPPER:aas] Created %d devices", len(devices))
    return devices


def discover(source_data: Any, ctx: MappingContext, rule_set: RuleSet, source_type: str) -> List[DiscoveredDevice]:
    described = []
    for device in map_shell(source_data, ctx, rule_set, source_type):
        id_short = device.metadata.get("submodelIdShort")
        paths = {
            m.id: f"submodels.{id_short}.elements.{m.metadata.get('idShort', m.id)}"
            for m in device.measurements
        }
        result = describe_device(device, source_type, paths)
        for discovered in result.measurements:
            measurement = device.get_measurement(discovered.id)
            model_type = measurement.metadata.get("modelType") if measurement else None
            discovered.description = (measurement.value or {}).get("description") if measurement else None
            discovered.details = {"aas": {"modelType": model_type}}
        described.append(result)
    return described


HANDLER = ProtocolHandler(
    source_type=SOURCE_TYPE,
    validate=validate,
    map=map_shell,
    discover=discover,
)
