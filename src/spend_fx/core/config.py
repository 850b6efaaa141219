from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./spend_fx.db"
    redis_url: str = "redis://localhost:6379/0"

    default_base_currency: str = "CNY"

    fx_provider_url: str = "https://api.frankfurter.app"
    fx_provider_timeout_s: float = 10.0
    fx_max_fallback_depth: int = 10

    fx_batch_task_timeout_s: float = 8.0
    fx_batch_deadline_s: float = 10.0
    fx_batch_max_workers: int = 16

    fx_refresh_enabled: bool = True


settings = Settings()
