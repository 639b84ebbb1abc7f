"""Tests del modelo canónico Device/Measurement.

Tests obligatorios:
1. Inferencia de tipos al insertar
2. Validación sin mutación parcial
3. Merge de mediciones por id
4. Round trip to_json / from_json (tres formas de entrada)
5. Exportaciones TOON y NGSI-LD
6. Relaciones legacy (referencias colgantes aceptadas)

Ejecutar:
    pytest tests/test_canonical_model.py -v
"""

import copy
import gc
import threading

import pytest

from telemetry_normalizer.core.domain import Device, Measurement, MeasurementType, infer_type
from telemetry_normalizer.model import (
    CanonicalDataModel,
    DeviceValidationError,
    ImportShape,
    RelationshipValidationError,
    classify_import,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def model() -> CanonicalDataModel:
    return CanonicalDataModel(source="tests", namespace="urn:ngsi-ld:plant")


@pytest.fixture
def boiler() -> dict:
    """Device sin tipos declarados."""
    return {
        "id": "boiler-1",
        "type": "Boiler",
        "measurements": [
            {"id": "temperature", "value": 81.5},
            {"id": "pressure", "value": 2.0},
            {"id": "running", "value": True},
            {"id": "mode", "value": "auto"},
            {"id": "setpoints", "value": {"low": 60, "high": 90}},
            {"id": "alarm", "value": None},
        ],
        "metadata": {"source": "tests", "location": "hall-a"},
    }


# =============================================================================
# TEST 1: INFERENCIA
# =============================================================================

class TestTypeInference:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, MeasurementType.BOOL),
            ("x", MeasurementType.STRING),
            (3, MeasurementType.INT),
            (3.0, MeasurementType.INT),
            (3.5, MeasurementType.FLOAT),
            (float("nan"), MeasurementType.FLOAT),
            ([1, 2], MeasurementType.OBJECT),
            ({"a": 1}, MeasurementType.OBJECT),
            (None, MeasurementType.UNKNOWN),
        ],
    )
    def test_inference_table(self, value, expected):
        assert infer_type(value) is expected

    def test_added_device_has_inferred_types(self, model, boiler):
        model.add_device(boiler)

        stored = model.get_device("boiler-1")

        types = {m.id: m.type for m in stored.measurements}
        assert types == {
            "temperature": MeasurementType.FLOAT,
            "pressure": MeasurementType.INT,
            "running": MeasurementType.BOOL,
            "mode": MeasurementType.STRING,
            "setpoints": MeasurementType.OBJECT,
            "alarm": MeasurementType.UNKNOWN,
        }

    def test_declared_type_is_kept(self, model):
        model.add_device({"id": "d", "type": "T", "measurements": [{"id": "m", "type": "float", "value": 2}]})
        assert model.get_device("d").measurements[0].type is MeasurementType.FLOAT


# =============================================================================
# TEST 2: VALIDACIÓN
# =============================================================================

class TestValidation:

    @pytest.mark.parametrize(
        "device",
        [
            {"type": "Boiler", "measurements": []},
            {"id": "x", "measurements": []},
            {"id": "", "type": "Boiler"},
            {"id": "x", "type": "Boiler", "measurements": [{"value": 1}]},
        ],
    )
    def test_invalid_device_leaves_store_unchanged(self, model, boiler, device):
        model.add_device(boiler)
        before = model.get_stats()["totalDevices"]

        with pytest.raises(DeviceValidationError):
            model.add_device(device)

        assert model.get_stats()["totalDevices"] == before

    def test_validation_error_is_value_error(self, model):
        with pytest.raises(ValueError):
            model.add_device({"id": "x"})

    def test_duplicate_measurement_ids_merge_into_first(self, model):
        model.add_device(
            {
                "id": "d",
                "type": "T",
                "measurements": [{"id": "a", "value": 1}, {"id": "b", "value": 2}, {"id": "a", "value": 3.5}],
            }
        )
        measurements = model.get_device("d").measurements
        assert [m.id for m in measurements] == ["a", "b"]
        assert measurements[0].value == 3.5
        assert measurements[0].type is MeasurementType.FLOAT


# =============================================================================
# TEST 3: MERGE DE MEDICIONES
# =============================================================================

class TestUpdateMeasurements:

    def test_merge_in_place_and_append(self, model, boiler):
        model.add_device(boiler)

        ok = model.update_measurements(
            "boiler-1",
            [{"id": "new_one", "value": 1}, {"id": "pressure", "value": 2.5}, Measurement.from_value("x", "y")],
        )

        assert ok is True
        stored = model.get_device("boiler-1")
        original_ids = [m["id"] for m in boiler["measurements"]]
        assert stored.measurement_ids == original_ids + ["new_one", "x"]
        pressure = stored.get_measurement("pressure")
        assert pressure.value == 2.5
        assert pressure.type is MeasurementType.FLOAT

    def test_unknown_device_returns_false(self, model):
        assert model.update_measurements("missing", [{"id": "a", "value": 1}]) is False
        assert model.get_device("missing") is None

    def test_refreshes_device_timestamp(self, model, boiler):
        model.add_device(boiler)
        before = model.get_device("boiler-1").metadata["timestamp"]

        model.update_measurements("boiler-1", [{"id": "temperature", "value": 90}])

        assert model.get_device("boiler-1").metadata["timestamp"] >= before

    def test_concurrent_updates_on_same_device_do_not_lose_writes(self, model):
        model.add_device({"id": "d", "type": "T", "measurements": []})

        def worker(prefix):
            for i in range(50):
                model.update_measurements("d", [{"id": f"{prefix}_{i}", "value": i}])

        threads = [threading.Thread(target=worker, args=(p,)) for p in ("a", "b", "c")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(model.get_device("d").measurements) == 150


# =============================================================================
# TEST 4: ROUND TRIP
# =============================================================================

def _strip_timestamps(device_dict):
    result = copy.deepcopy(device_dict)
    result["metadata"].pop("timestamp", None)
    return result


def _fingerprint(model):
    return sorted(
        (d.id, d.type, tuple((m.id, m.type.value, repr(m.value)) for m in d.measurements))
        for d in model.get_all_devices()
    )


class TestRoundTrip:

    def test_device_round_trip(self, model, boiler):
        model.add_device(boiler)

        exported = model.to_json(device_id="boiler-1")

        expected = Device.from_dict(boiler)
        expected_dict = model.get_device("boiler-1").to_dict()
        assert _strip_timestamps(exported) == _strip_timestamps(expected_dict)
        assert exported["id"] == expected.id
        assert [m["id"] for m in exported["measurements"]] == expected.measurement_ids
        assert _strip_timestamps(exported)["metadata"] == boiler["metadata"]
        assert exported["measurements"][0] == {"id": "temperature", "type": "float", "value": 81.5}

    def test_export_missing_device_is_none(self, model):
        assert model.to_json(device_id="missing") is None

    @pytest.mark.parametrize("shape", ["sequence", "envelope", "single"])
    def test_from_json_reproduces_device_set(self, model, boiler, shape):
        model.add_device(boiler)
        model.add_device({"id": "pump-1", "type": "Pump", "measurements": [{"id": "rpm", "value": 1500}]})
        exported = model.to_json()

        if shape == "sequence":
            payload = exported["devices"]
        elif shape == "envelope":
            payload = exported
        else:
            payload = exported["devices"][0]

        target = CanonicalDataModel()
        ids = target.from_json(payload)

        expected = [d for d in _fingerprint(model) if d[0] in ids]
        assert _fingerprint(target) == expected
        assert len(ids) == (1 if shape == "single" else 2)

    def test_from_json_is_atomic(self, model):
        payload = [{"id": "ok", "type": "T"}, {"id": "broken"}]
        with pytest.raises(DeviceValidationError):
            model.from_json(payload)
        assert model.get_stats()["totalDevices"] == 0

    def test_unrecognized_shape_is_noop(self, model):
        assert model.from_json({"foo": "bar"}) == []
        assert model.from_json("nope") == []
        assert model.get_stats()["totalDevices"] == 0

    def test_legacy_entity_envelope(self, model):
        ids = model.from_json(
            {
                "entities": [
                    {
                        "id": "sensor-9",
                        "type": "Sensor",
                        "attributes": {"temperature": {"value": 21.5, "unitCode": "CEL"}, "ok": True},
                    }
                ],
                "relationships": [{"type": "locatedIn", "source": "sensor-9", "target": "room-404"}],
            }
        )

        assert ids == ["sensor-9"]
        temperature = model.get_device("sensor-9").get_measurement("temperature")
        assert temperature.value == 21.5
        assert temperature.metadata == {"unitCode": "CEL"}
        assert len(model.get_relationships("sensor-9")) == 1

    @pytest.mark.parametrize(
        "payload,shape",
        [
            ([], ImportShape.SEQUENCE),
            ({"devices": []}, ImportShape.ENVELOPE),
            ({"entities": []}, ImportShape.LEGACY_ENVELOPE),
            ({"id": "a", "type": "b"}, ImportShape.SINGLE_DEVICE),
            ({"id": "a"}, ImportShape.UNRECOGNIZED),
        ],
    )
    def test_classify_import(self, payload, shape):
        assert classify_import(payload) is shape


# =============================================================================
# TEST 5: EXPORTACIONES
# =============================================================================

class TestExports:

    def test_toon(self, model, boiler):
        model.add_device(boiler)

        toon = model.to_toon()

        assert toon["format"] == "TOON"
        device = toon["devices"][0]
        assert set(device) == {"id", "type", "ts", "m", "meta"}
        assert device["ts"] == model.get_device("boiler-1").metadata["timestamp"]
        assert "timestamp" not in device["meta"]
        assert device["m"][0] == {"i": "temperature", "t": "float", "v": 81.5}

    def test_ngsild(self, model):
        model.add_device(
            {
                "id": "boiler-1",
                "type": "Boiler",
                "measurements": [{"id": "temperature", "value": 81.5, "metadata": {"unit": "CEL"}}],
            }
        )
        model.add_device({"id": "urn:ngsi-ld:Pump:7", "type": "Pump", "measurements": []})

        entities = {e["id"]: e for e in model.to_ngsild()}

        assert set(entities) == {"urn:ngsi-ld:plant:boiler-1", "urn:ngsi-ld:Pump:7"}
        boiler = entities["urn:ngsi-ld:plant:boiler-1"]
        assert boiler["@context"] == "urn:ngsi-ld:plant"
        assert boiler["temperature"]["type"] == "Property"
        assert boiler["temperature"]["value"] == 81.5
        assert boiler["temperature"]["unitCode"] == "CEL"
        assert "observedAt" in boiler["temperature"]

    def test_ngsild_custom_context(self, model, boiler):
        model.add_device(boiler)
        context = ["https://uri.etsi.org/ngsi-ld/v1/ngsi-ld-core-context.jsonld"]
        assert model.to_ngsild(context=context)[0]["@context"] == context

    def test_ngsild_reserved_measurement_names_are_prefixed(self, model):
        model.add_device(
            {
                "id": "boiler1",
                "type": "Boiler",
                "measurements": [
                    {"id": "id", "value": "boiler1"},
                    {"id": "type", "value": "fire-tube"},
                    {"id": "@context", "value": "x"},
                    {"id": "temp", "value": 20.5},
                ],
            }
        )

        entity = model.to_ngsild()[0]

        assert entity["id"] == "urn:ngsi-ld:plant:boiler1"
        assert entity["type"] == "Boiler"
        assert entity["@context"] == "urn:ngsi-ld:plant"
        assert entity["measurement_id"]["value"] == "boiler1"
        assert entity["measurement_type"]["value"] == "fire-tube"
        assert entity["measurement_context"]["value"] == "x"
        assert entity["temp"]["value"] == 20.5


# =============================================================================
# TEST 6: RELACIONES / ESTADO
# =============================================================================

class TestRelationshipsAndState:

    def test_dangling_relationship_is_accepted(self, model):
        rel_id = model.add_relationship({"type": "feeds", "source": "ghost-a", "target": "ghost-b"})

        assert rel_id.startswith("rel_")
        rels = model.get_relationships("ghost-b", direction="target")
        assert [r.id for r in rels] == [rel_id]
        assert model.get_relationships("ghost-b", direction="source") == []

    @pytest.mark.parametrize(
        "relationship",
        [{"source": "a", "target": "b"}, {"type": "t", "target": "b"}, {"type": "t", "source": "a"}],
    )
    def test_relationship_requires_endpoints(self, model, relationship):
        with pytest.raises(RelationshipValidationError):
            model.add_relationship(relationship)

    def test_invalid_direction(self, model):
        with pytest.raises(ValueError):
            model.get_relationships("a", direction="sideways")

    def test_returned_devices_are_copies(self, model, boiler):
        model.add_device(boiler)

        device = model.get_device("boiler-1")
        device.measurements.clear()
        device.metadata["location"] = "changed"

        stored = model.get_device("boiler-1")
        assert len(stored.measurements) == 6
        assert stored.metadata["location"] == "hall-a"

    def test_stats_and_monotonic_update(self, model, boiler):
        created = model.updated_at
        model.add_device(boiler)
        model.add_device({"id": "b2", "type": "Boiler", "measurements": [{"id": "t", "value": 1}]})

        stats = model.get_stats()

        assert stats["totalDevices"] == 2
        assert stats["totalMeasurements"] == 7
        assert stats["deviceTypes"] == {"Boiler": 2}
        assert model.updated_at >= created

    def test_source_defaults_to_model_source(self, model):
        model.add_device({"id": "d", "type": "T"})
        assert model.get_device("d").metadata["source"] == "tests"

    def test_remove_and_clear(self, model, boiler):
        model.add_device(boiler)
        assert model.remove_device("boiler-1") is True
        assert model.remove_device("boiler-1") is False

        model.add_device(boiler)
        model.add_relationship({"type": "t", "source": "a", "target": "b"})
        model.clear()
        stats = model.get_stats()
        assert stats["totalDevices"] == 0
        assert stats["totalRelationships"] == 0

    def test_key_locks_do_not_accumulate(self, model):
        for i in range(50):
            model.add_device({"id": f"gen-{i}", "type": "T", "measurements": [{"id": "v", "value": i}]})
            model.update_measurements(f"gen-{i}", [{"id": "v", "value": i + 1}])
        for i in range(50):
            model.remove_device(f"gen-{i}")
        gc.collect()

        assert len(model._key_locks) == 0
