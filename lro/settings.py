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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("LRO_DB_PATH", "lro.db")
    api_url: str = os.getenv("LRO_API_URL", "http://localhost:8000")
    log_level: str = os.getenv("LRO_LOG_LEVEL", "INFO")

    # Controller
    run_controller: bool = _env_bool("LRO_RUN_CONTROLLER", True)
    workers: int = _env_int("LRO_WORKERS", 2)
    resync_interval_s: int = _env_int("LRO_RESYNC_INTERVAL_S", 30)
    backoff_base_s: float = _env_float("LRO_BACKOFF_BASE_S", 0.005)
    backoff_max_s: float = _env_float("LRO_BACKOFF_MAX_S", 1000.0)

    # Limitador defaults used when the resource leaves them unset
    limitador_repository: str = os.getenv("LRO_LIMITADOR_REPOSITORY", "quay.io/3scale/limitador")
    limitador_version: str = os.getenv("LRO_LIMITADOR_VERSION", "latest")


settings = Settings()
