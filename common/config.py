from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env junto al repo por defecto; se puede apuntar a otro con NORMALIZER_ENV_FILE.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


@dataclass(frozen=True)
class Settings:
    namespace: str
    source: str

    storage_type: str
    storage_config_path: str

    log_level: str


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("NORMALIZER_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    namespace = os.getenv("NGSI_NAMESPACE", "urn:ngsi-ld:default")
    source = os.getenv("NORMALIZER_SOURCE", "universal-data-connector")

    # memory | postgresql | mariadb | mongodb | redis | timescaledb
    storage_type = os.getenv("STORAGE_TYPE", "memory")
    storage_config_path = os.getenv(
        "STORAGE_CONFIG_PATH", str(Path.cwd() / "config" / "storage.json")
    )

    log_level = os.getenv("LOG_LEVEL", "INFO")

    return Settings(
        namespace=namespace,
        source=source,
        storage_type=storage_type,
        storage_config_path=storage_config_path,
        log_level=log_level,
    )


def configure_logging(settings: Settings | None = None) -> None:
    """Configura logging para procesos que usan el core (CLI, workers)."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
