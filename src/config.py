from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Watchdog scan loop
    watchdog_enabled: bool = True
    watchdog_scan_interval_seconds: float = 30.0

    # Threshold registry (optional: empty string means built-in defaults only)
    watchdog_thresholds_file: str = ""

    # Alert persistence (optional: empty string means in-memory alerts)
    alert_db_path: str = ""

    # External collaborators (optional: empty string means not configured)
    agent_control_url: str = ""
    session_storage_url: str = ""

    # Audit / notification sink (optional: empty = log only, no webhook delivery)
    audit_webhook_url: str = ""
    audit_buffer_size: int = 500
    audit_delivery_interval_seconds: float = 60.0

    # Timeout for every outbound probe or delivery
    probe_timeout_seconds: float = 5.0

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
