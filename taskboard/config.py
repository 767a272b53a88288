from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://taskboard:taskboard@db:5432/taskboard"
  app_version: str = "v2026-10-19"
  log_level: str = "INFO"

  cookie_secure: bool = False
  session_ttl_days: int = 14

  cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"

  notification_ttl_days: int = 30
  notification_purge_interval_seconds: int = 3600

  realtime_send_timeout_seconds: float = 5.0

  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_username: str | None = None
  smtp_password: str | None = None
  smtp_from: str | None = None
  smtp_starttls: bool = True

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def is_test_database(self) -> bool:
    return "test" in self.database_url.rsplit("/", 1)[-1]


settings = Settings()
