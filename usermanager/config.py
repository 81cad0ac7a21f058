"""Runtime configuration for the user management service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

from .database import MEMORY_DATABASE, resolve_database_path

DEFAULT_PORT = 5001
DEFAULT_HOST = "0.0.0.0"
DEFAULT_ENVIRONMENT = "development"
TEST_ENVIRONMENT = "test"


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_port(value: Optional[str]) -> int:
    if value is None or not value.strip():
        return DEFAULT_PORT
    try:
        port = int(value.strip())
    except ValueError as exc:
        raise ValueError(f"PORT must be an integer, got {value!r}") from exc
    if not 1 <= port <= 65535:
        raise ValueError(f"PORT must be between 1 and 65535, got {port}")
    return port


def _parse_origins(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ("*",)
    origins = tuple(item.strip() for item in value.split(",") if item.strip())
    return origins or ("*",)


@dataclass(frozen=True)
class Settings:
    """Settings resolved from the process environment."""

    environment: str = DEFAULT_ENVIRONMENT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database_path: Union[Path, str] = MEMORY_DATABASE
    echo_sql: bool = False
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def is_test(self) -> bool:
        return self.environment == TEST_ENVIRONMENT


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (defaults to ``os.environ``).

    The ``test`` environment always uses an in-memory database; every other
    environment is file-backed at ``USERS_DB_PATH`` or the project default.
    SQL echo defaults to on for ``development`` only.
    """

    env = os.environ if environ is None else environ

    environment = (env.get("APP_ENV") or DEFAULT_ENVIRONMENT).strip().lower()
    if environment == TEST_ENVIRONMENT:
        database_path: Union[Path, str] = MEMORY_DATABASE
    else:
        database_path = resolve_database_path(env.get("USERS_DB_PATH"))

    return Settings(
        environment=environment,
        host=(env.get("HOST") or DEFAULT_HOST).strip() or DEFAULT_HOST,
        port=_parse_port(env.get("PORT")),
        database_path=database_path,
        echo_sql=_env_flag(env.get("USERS_SQL_ECHO"), environment == DEFAULT_ENVIRONMENT),
        cors_origins=_parse_origins(env.get("USERS_CORS_ORIGINS")),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )


__all__ = ["Settings", "load_settings", "DEFAULT_PORT"]
