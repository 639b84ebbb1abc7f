"""Métricas Prometheus del core.

Las degradaciones del mapping (reglas que fallan, payloads inválidos) no
se propagan como excepciones; estas métricas las hacen visibles.
"""

from prometheus_client import Counter

RULE_FAILURES = Counter(
    "telemetry_rule_failures_total",
    "Attribute transforms that failed and fell back to the original value",
    ["transform"],
)

MAPPING_RESULTS = Counter(
    "telemetry_mapping_total",
    "Payloads processed by the mapping layer",
    ["source_type", "status"],  # mapped, invalid, failed
)

STORAGE_OPERATIONS = Counter(
    "telemetry_storage_operations_total",
    "Storage adapter operations",
    ["engine", "operation"],  # write, read
)

STORAGE_ERRORS = Counter(
    "telemetry_storage_errors_total",
    "Storage adapter errors surfaced to callers",
    ["engine"],
)

__all__ = [
    "MAPPING_RESULTS",
    "RULE_FAILURES",
    "STORAGE_ERRORS",
    "STORAGE_OPERATIONS",
]
