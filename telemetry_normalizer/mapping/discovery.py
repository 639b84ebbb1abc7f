"""Descubrimiento de estructura de dispositivos.

``discover`` describe un dispositivo (ids de medición, tipos inferidos,
metadata descriptiva) para auto-registro SIN escribir en el modelo canónico.

El cache de descubiertos es explícito y por instancia de mapper: vive lo
mismo que el mapper, se vacía con ``clear()`` y está protegido con lock
porque un mapper puede compartirse entre threads.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class DiscoveredMeasurement:
    id: str
    name: str
    type: str
    source_path: str
    description: Optional[str] = None
    unit: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "unit": self.unit,
            "description": self.description,
            "sourcePath": self.source_path,
        }
        result.update(self.details)
        return result


@dataclass
class DiscoveredDevice:
    id: str
    type: str
    source_type: str
    measurements: List[DiscoveredMeasurement] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    discovered: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "sourceType": self.source_type,
            "discovered": self.discovered,
            "measurements": [m.to_dict() for m in self.measurements],
            "metadata": dict(self.metadata),
        }


class DiscoveryCache:
    """Cache acotado (LRU por inserción) de dispositivos descubiertos."""

    def __init__(self, max_size: int = 1000):
        self._max_size = max_size
        self._items: "OrderedDict[str, DiscoveredDevice]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, device: DiscoveredDevice) -> None:
        with self._lock:
            self._items.pop(device.id, None)
            self._items[device.id] = device
            while len(self._items) > self._max_size:
                self._items.popitem(last=False)

    def get(self, device_id: str) -> Optional[DiscoveredDevice]:
        with self._lock:
            return self._items.get(device_id)

    def list(self) -> List[DiscoveredDevice]:
        with self._lock:
            return list(self._items.values())

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
