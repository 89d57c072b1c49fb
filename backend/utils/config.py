"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str
    capacity_ceiling_percentage: float
    default_hours_per_day: float
    severity_low_max: float
    severity_medium_max: float
    severity_high_max: float
    seed_demo_data: bool
    suggestion_limit: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with `replace`."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Capacity Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/capacity.db")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        capacity_ceiling_percentage=float(os.getenv("CAPACITY_CEILING_PERCENTAGE", "100")),
        default_hours_per_day=float(os.getenv("DEFAULT_HOURS_PER_DAY", "8")),
        severity_low_max=float(os.getenv("SEVERITY_LOW_MAX", "110")),
        severity_medium_max=float(os.getenv("SEVERITY_MEDIUM_MAX", "125")),
        severity_high_max=float(os.getenv("SEVERITY_HIGH_MAX", "150")),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", False),
        suggestion_limit=int(os.getenv("SUGGESTION_LIMIT", "3")),
    )
