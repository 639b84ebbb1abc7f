"""Fixtures compartidas de los tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

RELATIONAL_CONFIG = {
    "host": "localhost",
    "database": "telemetry",
    "user": "tester",
    "password": "secret",
    "tableName": "test_records",
}


def make_payload(index: int, source_id: str = "sensor-1", **overrides: Any) -> Dict[str, Any]:
    """Payload de store() con timestamp BASE_TIME + index minutos."""
    payload = {
        "id": f"rec-{index}",
        "sourceId": source_id,
        "sourceType": "mqtt",
        "timestamp": (BASE_TIME + timedelta(minutes=index)).isoformat(),
        "data": {"temperature": 20 + index, "unit": "C"},
        "metadata": {"line": "line1"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sqlite_engine():
    """SQLite en memoria compartido entre threads (asyncio.to_thread)."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()
