"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ---------------- DATABASE ----------------
    database_url: str = "sqlite+aiosqlite:///./voicematrix.db"

    # ---------------- APP ----------------
    app_name: str = "Voice Matrix Usage Pipeline"
    app_version: str = "1.0.0"
    debug: bool = False

    # ---------------- VAPI ----------------
    vapi_api_key: str = ""
    vapi_base_url: str = "https://api.vapi.ai"
    vapi_timeout_seconds: float = 10.0
    # Unset means webhook signatures are not checked.
    vapi_webhook_secret: Optional[str] = None

    # ---------------- INTERNAL API ----------------
    internal_api_token: str = "internal-usage-processor"

    # ---------------- USAGE LIMITS ----------------
    usage_limit_minutes: int = 10
    grace_duration_seconds: int = 10
    default_max_duration_seconds: int = 300

    # ---------------- ENFORCEMENT QUEUE ----------------
    enforcement_batch_size: int = 10
    enforcement_claim_ttl_seconds: int = 600
    enforcement_auto_process: bool = True
    mutation_retry_attempts: int = 1
    mutation_retry_base_delay_seconds: float = 0.5

    # ---------------- WEBHOOK RATE LIMIT ----------------
    webhook_rate_limit: int = 120
    webhook_rate_window_seconds: float = 60.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
