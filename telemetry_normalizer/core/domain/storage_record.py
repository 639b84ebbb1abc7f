"""StorageRecord - unidad que persisten los storage adapters.

``timestamp`` es el tiempo de observación que trae el payload.
``stored_at`` lo asigna SIEMPRE el adapter al escribir y es independiente
de ``timestamp``.
"""

from __future__ import annotations

import json
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_record_id() -> str:
    """Id opaco ``{epoch_ms}_{9 chars base36}``. No reproducible."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}_{suffix}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Normaliza datetime / ISO-8601 / epoch (s o ms) a datetime UTC aware.

    Datetimes naive se interpretan como UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch en milisegundos si es claramente mayor que un epoch en segundos
        seconds = value / 1000.0 if value > 1e11 else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class StorageRecord:
    id: str
    source_id: Optional[str]
    source_type: Optional[str]
    timestamp: datetime
    data: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    quality: Dict[str, Any] = field(default_factory=dict)
    processing: Dict[str, Any] = field(default_factory=dict)
    stored_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, payload: Mapping[str, Any], record_id: Optional[str] = None) -> "StorageRecord":
        """Envuelve un payload entrante en un StorageRecord nuevo.

        Acepta claves snake_case (``source_id``) o del wire (``sourceId``).
        Un ``id`` en el payload se respeta; si no, se genera.
        """
        stored_at = utcnow()
        timestamp = parse_timestamp(_pick(payload, "timestamp")) or stored_at
        return cls(
            id=str(record_id or _pick(payload, "id") or generate_record_id()),
            source_id=_pick(payload, "source_id", "sourceId"),
            source_type=_pick(payload, "source_type", "sourceType"),
            timestamp=timestamp,
            data=payload.get("data"),
            metadata=dict(payload.get("metadata") or {}),
            quality=dict(payload.get("quality") or {}),
            processing=dict(payload.get("processing") or {}),
            stored_at=stored_at,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StorageRecord":
        """Inverso de ``to_dict`` (formato wire camelCase)."""
        return cls(
            id=str(data["id"]),
            source_id=data.get("sourceId"),
            source_type=data.get("sourceType"),
            timestamp=parse_timestamp(data.get("timestamp")),
            data=data.get("data"),
            metadata=dict(data.get("metadata") or {}),
            quality=dict(data.get("quality") or {}),
            processing=dict(data.get("processing") or {}),
            stored_at=parse_timestamp(data.get("storedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "sourceType": self.source_type,
            "timestamp": isoformat(self.timestamp),
            "data": self.data,
            "metadata": self.metadata,
            "quality": self.quality,
            "processing": self.processing,
            "storedAt": isoformat(self.stored_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def record_matches(record: StorageRecord, text: str) -> bool:
    """True si ``text`` aparece (case-insensitive) en un identificador o en
    data/metadata serializados.

    Todos los engines filtran sus candidatos con esta función: el matching
    nativo puede variar, pero un resultado devuelto siempre contiene el texto.
    """
    needle = (text or "").lower()
    if not needle:
        return False
    haystack = (
        record.id,
        record.source_id or "",
        record.source_type or "",
        json.dumps(record.data, default=str, ensure_ascii=False),
        json.dumps(record.metadata, default=str, ensure_ascii=False),
    )
    return any(needle in str(part).lower() for part in haystack)
