from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _default_db_path() -> str:
    return os.path.join(os.path.expanduser("~"), ".silohound", "projects.db")


@dataclass(frozen=True)
class Settings:
    # Registry / event log
    db_path: str = os.getenv("SILOHOUND_DB_PATH", _default_db_path())

    # Container runtime
    docker_timeout_s: int = _env_int("SILOHOUND_DOCKER_TIMEOUT_S", 120)
    stop_timeout_s: int = _env_int("SILOHOUND_STOP_TIMEOUT_S", 10)

    # Readiness probe
    readiness_timeout_s: int = _env_int("SILOHOUND_READINESS_TIMEOUT_S", 600)
    readiness_chunk_size: int = _env_int("SILOHOUND_READINESS_CHUNK_SIZE", 1024)
    # A log stream that ends without the marker counts as a failure when set.
    strict_readiness: bool = _env_bool("SILOHOUND_STRICT_READINESS", False)

    # Application UI
    ui_url: str = os.getenv("SILOHOUND_UI_URL", "http://127.0.0.1:8181")
    ui_wait_s: int = _env_int("SILOHOUND_UI_WAIT_S", 60)


settings = Settings()
