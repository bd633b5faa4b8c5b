from __future__ import annotations

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    database_url: str = Field(..., alias="DATABASE_URL")
    tz: str = Field("UTC", alias="TZ")
    app_env: str = Field("development", alias="APP_ENV")

    email_user: Optional[str] = Field(None, alias="EMAIL_USER")
    email_pass: Optional[str] = Field(None, alias="EMAIL_PASS")
    email_host: Optional[str] = Field(None, alias="EMAIL_HOST")
    email_port: Optional[int] = Field(None, alias="EMAIL_PORT")
    email_secure: bool = Field(False, alias="EMAIL_SECURE")
    email_from_name: str = Field("Bill Splitter", alias="EMAIL_FROM_NAME")

    notify_interval_minutes: int = Field(5, alias="NOTIFY_INTERVAL_MINUTES", ge=1)

    @property
    def zoneinfo(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
