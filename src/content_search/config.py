"""Application configuration via pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All runtime configuration, loaded from environment / .env file."""

    redis_url: str = "redis://localhost:6379/0"
    cache_backend: str = "redis"
    analytics_backend: str = "memory"
    content_store_path: str = "config/content.yaml"
    variant_timeout_seconds: float = 5.0
    search_cache_ttl_seconds: int = 300
    suggestion_cache_ttl_seconds: int = 900
    metadata_cache_ttl_seconds: int = 3600
    memory_cache_max_entries: int = 1024
    analytics_queue_size: int = 1000
    slow_search_ms: float = 500.0
    admin_token: str = ""
    rate_limit_enabled: bool = True
    search_rate_limit: str = "100/15 minutes"
    suggestion_rate_limit: str = "60/minute"
    port: int = 7777
    log_level: str = "INFO"
    environment: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


# Module-level singleton; imported everywhere.
settings = Settings()
