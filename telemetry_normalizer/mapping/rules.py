"""Motor de reglas de atributos.

Aplica rename + transformación de valor a un par (nombre, valor).
Funciones puras: el resultado depende solo de (nombre, valor, regla).

GARANTÍA: una regla mal definida o que lanza excepción NUNCA aborta el
mapping del payload. Se loguea, se cuenta y se devuelve el valor original
sin transformar.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..metrics import RULE_FAILURES

logger = logging.getLogger(__name__)

_FALSE_STRINGS = {"false", "0", "", "off", "no"}


class TransformType(str, Enum):
    SCALE = "scale"
    OFFSET = "offset"
    ROUND = "round"
    TO_STRING = "toString"
    TO_NUMBER = "toNumber"
    TO_BOOLEAN = "toBoolean"
    MAP = "map"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"


@dataclass(frozen=True)
class Transform:
    """Definición declarativa de una transformación.

    ``type`` se guarda tal cual llega de configuración; un tipo desconocido
    no falla al parsear, solo deja el valor sin tocar al aplicarse.
    """
    type: str
    factor: Any = None
    offset_amount: Any = None
    decimals: Any = None
    mapping: Optional[Mapping[Any, Any]] = None

    @classmethod
    def from_config(cls, raw: Mapping[str, Any]) -> "Transform":
        offset_amount = raw.get("offset_amount", raw.get("offsetAmount", raw.get("offset")))
        return cls(
            type=str(raw.get("type")),
            factor=raw.get("factor"),
            offset_amount=offset_amount,
            decimals=raw.get("decimals"),
            mapping=raw.get("mapping"),
        )


TransformSpec = Union[Transform, Callable[[Any], Any]]


@dataclass(frozen=True)
class MappingRule:
    target_name: Optional[str] = None
    transform: Optional[TransformSpec] = None


@dataclass(frozen=True)
class AttributeResult:
    name: str
    value: Any


class RuleFailureCounter:
    """Contador thread-safe de transformaciones fallidas por tipo."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_transform: Dict[str, int] = {}

    def record(self, transform_type: str) -> None:
        with self._lock:
            self._by_transform[transform_type] = self._by_transform.get(transform_type, 0) + 1

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._by_transform.values())

    def to_dict(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_transform)

    def reset(self) -> None:
        with self._lock:
            self._by_transform.clear()


def parse_rules(raw: Optional[Mapping[str, Any]]) -> Dict[str, MappingRule]:
    """Construye reglas desde configuración (dict por nombre de atributo).

    Acepta ``targetName``/``target_name``. Un ``transform`` puede ser un
    dict declarativo o un callable.
    """
    rules: Dict[str, MappingRule] = {}
    for attribute, entry in (raw or {}).items():
        if isinstance(entry, MappingRule):
            rules[attribute] = entry
            continue
        if not isinstance(entry, Mapping):
            logger.warning("[RULES] Ignoring malformed rule for %s: %r", attribute, entry)
            continue

        transform = entry.get("transform")
        if isinstance(transform, Mapping):
            transform = Transform.from_config(transform)
        elif transform is not None and not callable(transform) and not isinstance(transform, Transform):
            logger.warning("[RULES] Ignoring malformed transform for %s: %r", attribute, transform)
            transform = None

        rules[attribute] = MappingRule(
            target_name=entry.get("target_name", entry.get("targetName")),
            transform=transform,
        )
    return rules


def apply_rule(
    name: str,
    value: Any,
    rules: Optional[Mapping[str, MappingRule]],
    failures: Optional[RuleFailureCounter] = None,
) -> AttributeResult:
    """Aplica la regla configurada para ``name`` (si existe).

    Returns:
        AttributeResult con el nombre destino (o el original) y el valor
        transformado (o el original si la transformación falló).
    """
    rule = (rules or {}).get(name)
    if rule is None:
        return AttributeResult(name=name, value=value)

    target = rule.target_name or name
    if rule.transform is None:
        return AttributeResult(name=target, value=value)

    transform_type = _transform_label(rule.transform)
    try:
        if isinstance(rule.transform, Transform):
            transformed = apply_transform(value, rule.transform)
        else:
            transformed = rule.transform(value)
    except Exception as e:
        logger.error(
            "[RULES] Transform %s failed for attribute=%s value=%r: %s",
            transform_type,
            name,
            value,
            e,
        )
        RULE_FAILURES.labels(transform=transform_type).inc()
        if failures is not None:
            failures.record(transform_type)
        return AttributeResult(name=target, value=value)

    return AttributeResult(name=target, value=transformed)


def apply_transform(value: Any, transform: Transform) -> Any:
    """Aplica una transformación declarativa. Puede lanzar excepción."""
    try:
        kind = TransformType(transform.type)
    except ValueError:
        logger.warning("[RULES] Unknown transformation type: %s", transform.type)
        return value

    if kind is TransformType.SCALE:
        factor = 1 if transform.factor is None else transform.factor
        return _as_number(value) * _as_number(factor)

    if kind is TransformType.OFFSET:
        amount = 0 if transform.offset_amount is None else transform.offset_amount
        return _as_number(value) + _as_number(amount)

    if kind is TransformType.ROUND:
        decimals = int(transform.decimals or 0)
        factor = 10 ** decimals
        # medio hacia arriba (+inf), no banker's rounding de round()
        return math.floor(_as_number(value) * factor + 0.5) / factor

    if kind is TransformType.TO_STRING:
        return _as_string(value)

    if kind is TransformType.UPPERCASE:
        return _as_string(value).upper()

    if kind is TransformType.LOWERCASE:
        return _as_string(value).lower()

    if kind is TransformType.TO_NUMBER:
        return _as_number(value)

    if kind is TransformType.TO_BOOLEAN:
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_STRINGS
        return bool(value)

    # MAP
    mapping = transform.mapping
    if mapping is None:
        raise ValueError("map transform requires a mapping table")
    if value in mapping:
        return mapping[value]
    if str(value) in mapping:
        return mapping[str(value)]
    return value


def _as_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value: Any) -> Union[int, float]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    raise TypeError(f"Value is not numeric: {value!r}")


def _transform_label(transform: TransformSpec) -> str:
    if isinstance(transform, Transform):
        return transform.type
    return getattr(transform, "__name__", "callable")
