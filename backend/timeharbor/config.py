from __future__ import annotations

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "TimeHarbor"
    environment: str = "development"
    host: str = os.getenv("TH_HOST", "127.0.0.1")
    port: int = int(os.getenv("TH_PORT", "8080"))

    sqlite_path: Path = Path(os.getenv("TH_SQLITE_PATH", "./data/timeharbor.db"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")
    log_level: str = os.getenv("TH_LOG_LEVEL", "INFO")

    recent_limit: int = int(os.getenv("TH_RECENT_LIMIT", "10"))

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if not value:
            return "INFO"
        return str(value).strip().upper()


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
