"""Contexto que el cliente de protocolo pasa junto al payload."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


@dataclass(frozen=True)
class MappingContext:
    """Hints del llamador: overrides explícitos de id/type y datos del endpoint."""
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    source_id: Optional[str] = None
    source: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    endpoint: Optional[str] = None
    topic: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "MappingContext":
        """Acepta claves snake_case o camelCase (``deviceId``, ``entityId`` legacy)."""
        if not data:
            return cls()

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        return cls(
            device_id=pick("device_id", "deviceId", "entity_id", "entityId"),
            device_type=pick("device_type", "deviceType", "entity_type", "entityType"),
            source_id=pick("source_id", "sourceId"),
            source=pick("source"),
            host=pick("host"),
            port=pick("port"),
            endpoint=pick("endpoint", "endpointUrl"),
            topic=pick("topic"),
        )


ContextLike = Union[MappingContext, Mapping[str, Any], None]


def as_context(context: ContextLike) -> MappingContext:
    if isinstance(context, MappingContext):
        return context
    return MappingContext.from_dict(context)
