"""Engines concretos del contrato de storage."""

from .mariadb import MariaDBStorageAdapter
from .memory import MemoryStorageAdapter
from .mongodb import MongoDBStorageAdapter
from .postgresql import PostgreSQLStorageAdapter
from .redis import RedisStorageAdapter
from .relational import RelationalStorageAdapter
from .timescaledb import TimescaleDBStorageAdapter

__all__ = [
    "MariaDBStorageAdapter",
    "MemoryStorageAdapter",
    "MongoDBStorageAdapter",
    "PostgreSQLStorageAdapter",
    "RedisStorageAdapter",
    "RelationalStorageAdapter",
    "TimescaleDBStorageAdapter",
]
