import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        field_secret: str,
        cache_ttl_secs: float,
        cache_max_entries: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.field_secret = field_secret
        self.cache_ttl_secs = cache_ttl_secs
        self.cache_max_entries = cache_max_entries
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CASHFLOW_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cashflow.db"
    database_url = os.getenv("CASHFLOW_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CASHFLOW_TIMEZONE", "UTC")
    field_secret = os.getenv(
        "CASHFLOW_FIELD_SECRET",
        "5c1d0a8f3e7b42c99d6f0e1a2b3c4d5e6f708192a3b4c5d6e7f8091a2b3c4d5e",
    )
    cache_ttl_secs = float(os.getenv("CASHFLOW_CACHE_TTL_SECS", "120"))
    cache_max_entries = int(os.getenv("CASHFLOW_CACHE_MAX_ENTRIES", "1000"))
    scheduler_enabled = _env_flag("CASHFLOW_SCHEDULER_ENABLED", "true")
    log_level = os.getenv("CASHFLOW_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        field_secret=field_secret,
        cache_ttl_secs=cache_ttl_secs,
        cache_max_entries=cache_max_entries,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
