"""Errores de la capa de storage."""

from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base de los errores de storage."""


class StorageConfigError(StorageError):
    """Configuración inválida o tipo de storage no soportado."""


class StorageConnectivityError(StorageError):
    """Fallo de I/O contra el backend (conexión, timeout, comando).

    Envuelve la excepción del driver en ``__cause__``.
    """

    def __init__(self, engine: str, operation: str, message: Optional[str] = None):
        self.engine = engine
        self.operation = operation
        super().__init__(f"[{engine}] {operation} failed" + (f": {message}" if message else ""))


class NotConnectedError(StorageConnectivityError):
    """Operación de I/O antes de ``connect()`` (o después de ``disconnect()``)."""

    def __init__(self, engine: str, operation: str):
        super().__init__(engine, operation, "adapter is not connected")
