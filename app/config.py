from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str
    internal_job_token: str | None = None
    app_env: str = "dev"
    app_timezone: str = "Asia/Manila"
    term_status_sweep_enabled: bool = False
    term_status_sweep_interval_sec: float = 86400.0
    side_effect_workers: int = 4
    db_connect_timeout_sec: float = 10.0
    db_statement_timeout_ms: int = 30000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def local_today() -> date:
    try:
        tz = ZoneInfo(get_settings().app_timezone)
    except Exception:  # noqa: BLE001
        tz = ZoneInfo("Asia/Manila")
    return datetime.now(tz).date()
