from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine


logger = logging.getLogger(__name__)


def build_sqlalchemy_url(
    drivername: str,
    *,
    host: str,
    port: int,
    database: str,
    user: str,
    password: str,
) -> URL:
    # URL.create escapa passwords con caracteres especiales (@, :, /).
    return URL.create(
        drivername,
        username=user,
        password=password,
        host=host,
        port=port,
        database=database,
    )


def build_engine(
    url: URL | str,
    *,
    pool_size: int = 10,
    pool_timeout: float = 2.0,
    max_overflow: int = 0,
    pool_recycle: int = 300,
    connect_args: Optional[Dict[str, Any]] = None,
) -> Engine:
    """Crea un engine con pool acotado.

    ``pool_timeout`` es el tiempo máximo esperando una conexión libre: con el
    pool agotado el checkout falla con ``sqlalchemy.exc.TimeoutError`` en vez de
    bloquear indefinidamente.
    """
    safe_url = url.render_as_string(hide_password=True) if isinstance(url, URL) else "<url>"
    logger.info(
        "[DB] Crear engine url=%s pool_size=%s max_overflow=%s pool_timeout=%s",
        safe_url,
        pool_size,
        max_overflow,
        pool_timeout,
    )

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=pool_recycle,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        connect_args=connect_args or {},
    )


def ping(engine: Engine) -> None:
    """SELECT 1 contra el engine. Propaga el error del driver si falla."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
