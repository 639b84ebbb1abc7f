"""Variantes de protocolo: funciones puras {validate, map, discover}."""

from . import asset_submodel, generic, node_telemetry, register_telemetry, topic_payload
from .common import ProtocolHandler, RuleSet

__all__ = [
    "ProtocolHandler",
    "RuleSet",
    "asset_submodel",
    "generic",
    "node_telemetry",
    "register_telemetry",
    "topic_payload",
]
