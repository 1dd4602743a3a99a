import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        alert_ttl_days: int,
        alert_refresh_minutes: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.alert_ttl_days = alert_ttl_days
        self.alert_refresh_minutes = alert_refresh_minutes
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendwise.db"
    database_url = os.getenv("SPENDWISE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDWISE_TIMEZONE", "Asia/Kolkata")
    alert_ttl_days = int(os.getenv("SPENDWISE_ALERT_TTL_DAYS", "30"))
    alert_refresh_minutes = int(os.getenv("SPENDWISE_ALERT_REFRESH_MINUTES", "60"))
    scheduler_enabled = _env_flag("SPENDWISE_SCHEDULER_ENABLED", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        alert_ttl_days=alert_ttl_days,
        alert_refresh_minutes=alert_refresh_minutes,
        scheduler_enabled=scheduler_enabled,
    )
