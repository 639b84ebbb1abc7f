"""Capa de mapeo: reglas de atributos, mappers por protocolo y fachada."""

from .context import MappingContext
from .discovery import DiscoveredDevice, DiscoveredMeasurement, DiscoveryCache
from .engine import MappingEngine
from .field_mapping import FieldMapping, FieldMappingError, SourceMapping
from .mapper import Mapper, MapperKind
from .rules import AttributeResult, MappingRule, RuleFailureCounter, Transform, apply_rule, parse_rules

__all__ = [
    "AttributeResult",
    "DiscoveredDevice",
    "DiscoveredMeasurement",
    "DiscoveryCache",
    "FieldMapping",
    "FieldMappingError",
    "Mapper",
    "MapperKind",
    "MappingContext",
    "MappingEngine",
    "MappingRule",
    "RuleFailureCounter",
    "SourceMapping",
    "Transform",
    "apply_rule",
    "parse_rules",
]
