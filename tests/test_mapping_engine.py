"""Tests de MappingEngine (fachada mapper + modelo).

Ejecutar:
    pytest tests/test_mapping_engine.py -v
"""

from unittest.mock import MagicMock

import pytest

from telemetry_normalizer.core.domain import Device
from telemetry_normalizer.mapping import Mapper, MapperKind, MappingEngine
from telemetry_normalizer.model import ModelValidationError


@pytest.fixture
def engine() -> MappingEngine:
    return MappingEngine(namespace="urn:ngsi-ld:plant")


MQTT_MESSAGE = {"topic": "plant/line1/sensor7", "payload": {"temp": 21.5, "unit": "C"}}


class TestMapData:

    def test_maps_into_model(self, engine):
        ids = engine.map_data(MQTT_MESSAGE, source_type="mqtt")

        assert ids == ["plant_line1_sensor7"]
        device = engine.get_device("plant_line1_sensor7")
        assert device.type == "MQTT_plant"
        assert [d.id for d in engine.get_devices_by_type("MQTT_plant")] == ids

    def test_source_type_from_context(self, engine):
        ids = engine.map_data(
            {"unitId": 2, "registers": {"holding_speed": 1200}},
            {"sourceType": "modbus", "sourceId": "plc7"},
        )
        assert ids == ["modbus_unit2_plc7"]

    def test_unknown_source_type_falls_back_to_generic(self, engine):
        ids = engine.map_data({"id": "dev-1", "v": 1}, source_type="profinet")
        assert ids == ["dev-1"]

    def test_invalid_payload_returns_empty(self, engine):
        assert engine.map_data(None, source_type="opcua") == []
        assert engine.list_devices() == []

    def test_rejected_device_is_counted_and_raised(self, engine):
        broken = MagicMock(spec=Mapper)
        broken.map.return_value = [Device(id="", type="X")]
        engine.register_mapper("broken", broken)

        with pytest.raises(ModelValidationError):
            engine.map_data({"v": 1}, source_type="broken")

        stats = engine.get_mapping_statistics()
        assert stats["totalMappings"] == 1
        assert stats["failedMappings"] == 1
        assert stats["successfulMappings"] == 0

    def test_register_mapper_requires_mapper(self, engine):
        with pytest.raises(TypeError):
            engine.register_mapper("bad", object())


class TestBatch:

    def test_failure_does_not_stop_batch(self, engine):
        broken = MagicMock(spec=Mapper)
        broken.map.return_value = [Device(id="x", type="")]
        engine.register_mapper("broken", broken)

        results = engine.map_batch(
            [
                {"sourceData": MQTT_MESSAGE, "sourceType": "mqtt", "context": {"n": 1}},
                {"sourceData": {"v": 1}, "sourceType": "broken", "context": {"n": 2}},
                {"sourceData": {"id": "g1", "v": 2}, "sourceType": "http", "context": {"n": 3}},
            ]
        )

        assert [r["deviceIds"] for r in results["successful"]] == [["plant_line1_sensor7"], ["g1"]]
        assert len(results["failed"]) == 1
        assert results["failed"][0]["context"] == {"n": 2}


class TestExternalSurface:

    def test_exports(self, engine):
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")

        canonical = engine.export_canonical_json({"includeMetadata": False})
        linked = engine.export_linked_data()
        compact = engine.export_compact_format()

        assert "metadata" not in canonical
        assert canonical["devices"][0]["id"] == "plant_line1_sensor7"
        assert linked[0]["id"] == "urn:ngsi-ld:plant:plant_line1_sensor7"
        assert linked[0]["temp"] == {
            "type": "Property",
            "value": 21.5,
            "observedAt": linked[0]["temp"]["observedAt"],
        }
        assert compact["devices"][0]["m"][0]["i"] == "temp"

    def test_linked_data_keeps_entity_identity(self, engine):
        engine.map_data({"id": "boiler1", "temp": 20.5}, source_type="http")

        entity = engine.export_linked_data()[0]

        assert entity["id"] == "urn:ngsi-ld:plant:boiler1"
        assert entity["type"] == "HTTP_Device"
        assert entity["measurement_id"]["value"] == "boiler1"
        assert entity["temp"]["value"] == 20.5

    def test_export_single_device(self, engine):
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")
        assert engine.export_canonical_json({"deviceId": "plant_line1_sensor7"})["type"] == "MQTT_plant"
        assert engine.export_canonical_json({"deviceId": "missing"}) is None

    def test_statistics(self, engine):
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")

        stats = engine.get_mapping_statistics()

        assert stats["successfulMappings"] == 1
        assert stats["lastMappingTime"] is not None
        assert stats["dataModel"]["totalDevices"] == 1
        assert "opcua" in stats["registeredMappers"]
        assert stats["mappers"]["mqtt"]["stats"]["mapped"] == 1

    def test_clear_all(self, engine):
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")
        engine.clear_all()
        assert engine.list_devices() == []

    def test_remove_device(self, engine):
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")
        assert engine.remove_device("plant_line1_sensor7") is True
        assert engine.get_device("plant_line1_sensor7") is None


class TestConfiguration:

    def test_rules_at_construction(self):
        engine = MappingEngine(rules={"mqtt": {"temp": {"targetName": "temperature"}}})
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")
        assert engine.get_device("plant_line1_sensor7").get_measurement("temperature") is not None

    def test_update_config(self, engine):
        engine.update_config(
            {
                "namespace": "urn:ngsi-ld:other",
                "rules": {"mqtt": {"temp": {"transform": {"type": "scale", "factor": 2}}}, "nope": {}},
            }
        )
        engine.map_data(MQTT_MESSAGE, source_type="mqtt")

        assert engine.get_device("plant_line1_sensor7").get_measurement("temp").value == 43.0
        assert engine.export_linked_data()[0]["id"].startswith("urn:ngsi-ld:other:")

    def test_default_registry(self, engine):
        assert engine.get_mapper("opcua").kind is MapperKind.NODE_TELEMETRY
        assert engine.get_mapper("s7").kind is MapperKind.GENERIC
        assert engine.get_mapper("aas").kind is MapperKind.ASSET_SUBMODEL
