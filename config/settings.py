"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _default_durable_url() -> str:
    """SQLite file under ./cache, next to where the service runs."""
    return f"sqlite:///{Path('./cache') / 'deco_cache.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Tiered cache
    cache_memory_enabled: bool = True
    cache_durable_enabled: bool = True
    cache_default_ttl_seconds: int = 3600
    cache_max_memory_entries: int = 100
    cache_durable_prefix: str = "deco-cache:"
    # "memory://" selects the in-process store (tests, ephemeral hosts)
    cache_durable_url: str = _default_durable_url()
    cache_durable_quota_bytes: int = 5 * 1024 * 1024
    cache_sweep_on_start: bool = True

    # Fetch coordinator defaults
    fetch_ttl_seconds: int = 7200
    fetch_debounce_ms: int = 100
    fetch_cache_enabled: bool = True
    fetch_on_create: bool = True
    coalesce_timeout_seconds: float = 30.0

    # Upstream content source
    source_base_url: Optional[str] = None
    source_timeout_seconds: float = 10.0
    source_max_attempts: int = 3

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
