from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TRACKCACHE_", env_file=".env", extra="ignore", populate_by_name=True
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("TRACKCACHE_REDIS_URL", "REDIS_URL"),
    )
    client_name: str | None = None

    # Client-side cache
    enable_statistics: bool = False

    # Invalidation listener
    invalidation_channel: str = "__redis__:invalidate"
    listener_poll_timeout: float = 1.0
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0

    # Observability
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
