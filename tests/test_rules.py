"""Tests del motor de reglas de atributos.

Cubre:
1. Rename + cada tipo de transformación
2. Fallos de transformación: valor original + contador
3. Parseo de reglas desde configuración (snake_case / camelCase)

Ejecutar:
    pytest tests/test_rules.py -v
"""

import pytest

from telemetry_normalizer.mapping.rules import (
    MappingRule,
    RuleFailureCounter,
    Transform,
    apply_rule,
    apply_transform,
    parse_rules,
)


# =============================================================================
# TRANSFORMACIONES
# =============================================================================

class TestTransforms:
    """Cada transformación declarativa."""

    def test_scale(self):
        assert apply_transform(10, Transform(type="scale", factor=2)) == 20

    def test_scale_accepts_numeric_strings(self):
        assert apply_transform("4", Transform(type="scale", factor=0.5)) == 2.0

    def test_offset(self):
        assert apply_transform(10, Transform(type="offset", offset_amount=-2)) == 8

    def test_round_half_up(self):
        """2.5 → 3 y -2.5 → -2: medio hacia +inf, no banker's rounding."""
        assert apply_transform(2.5, Transform(type="round", decimals=0)) == 3
        assert apply_transform(-2.5, Transform(type="round", decimals=0)) == -2
        assert apply_transform(1.2345, Transform(type="round", decimals=2)) == 1.23

    def test_to_string(self):
        assert apply_transform(True, Transform(type="toString")) == "true"
        assert apply_transform(42, Transform(type="toString")) == "42"

    def test_to_number(self):
        assert apply_transform("42", Transform(type="toNumber")) == 42
        assert apply_transform("4.5", Transform(type="toNumber")) == 4.5

    @pytest.mark.parametrize(
        "value,expected",
        [("off", False), ("FALSE", False), ("0", False), ("yes", True), (0, False), (3, True)],
    )
    def test_to_boolean(self, value, expected):
        assert apply_transform(value, Transform(type="toBoolean")) is expected

    def test_map_by_value_or_string_key(self):
        transform = Transform(type="map", mapping={"1": "ON", "0": "OFF"})
        assert apply_transform(1, transform) == "ON"
        assert apply_transform("0", transform) == "OFF"
        assert apply_transform(7, transform) == 7

    def test_unknown_type_leaves_value(self):
        assert apply_transform(5, Transform(type="cube")) == 5


# =============================================================================
# APLICACIÓN DE REGLAS
# =============================================================================

class TestApplyRule:
    """apply_rule: rename, passthrough y degradación."""

    def test_without_rule_passthrough(self):
        result = apply_rule("temp", 21.5, {})
        assert result.name == "temp"
        assert result.value == 21.5

    def test_rename_only(self):
        result = apply_rule("temp", 21.5, {"temp": MappingRule(target_name="temperature")})
        assert result.name == "temperature"
        assert result.value == 21.5

    def test_failed_transform_returns_original_and_counts(self):
        failures = RuleFailureCounter()
        rules = {"temp": MappingRule(target_name="temperature", transform=Transform(type="toNumber"))}

        result = apply_rule("temp", "not-a-number", rules, failures)

        assert result.name == "temperature"
        assert result.value == "not-a-number"
        assert failures.total == 1
        assert failures.to_dict() == {"toNumber": 1}

    def test_callable_transform(self):
        rules = {"raw": MappingRule(transform=lambda v: v * 10)}
        assert apply_rule("raw", 3, rules).value == 30

    def test_callable_that_raises_does_not_propagate(self):
        def explode(value):
            raise RuntimeError("boom")

        failures = RuleFailureCounter()
        result = apply_rule("raw", 3, {"raw": MappingRule(transform=explode)}, failures)

        assert result.value == 3
        assert failures.to_dict() == {"explode": 1}

    def test_map_without_table_counts_failure(self):
        failures = RuleFailureCounter()
        result = apply_rule("state", 1, {"state": MappingRule(transform=Transform(type="map"))}, failures)
        assert result.value == 1
        assert failures.total == 1


# =============================================================================
# PARSEO DE CONFIGURACIÓN
# =============================================================================

class TestParseRules:
    """parse_rules acepta el formato wire."""

    def test_camel_case_keys(self):
        rules = parse_rules(
            {"Temp": {"targetName": "temperature", "transform": {"type": "offset", "offsetAmount": 1.5}}}
        )
        rule = rules["Temp"]
        assert rule.target_name == "temperature"
        assert rule.transform.offset_amount == 1.5

    def test_legacy_offset_key(self):
        rules = parse_rules({"p": {"transform": {"type": "offset", "offset": 3}}})
        assert apply_rule("p", 1, rules).value == 4

    def test_malformed_rules_are_ignored(self):
        rules = parse_rules({"ok": {"target_name": "fine"}, "bad": "scale", "worse": {"transform": 5}})
        assert set(rules) == {"ok", "worse"}
        assert rules["worse"].transform is None

    def test_counter_reset(self):
        counter = RuleFailureCounter()
        counter.record("scale")
        counter.record("scale")
        counter.reset()
        assert counter.total == 0
