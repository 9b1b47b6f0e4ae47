"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. The remote base URL chosen by the
operator is not a setting: it lives in the key-value table and falls back to
``default_api_url`` (see ``kiosk.services.remote_client``).
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Kiosk settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Local store
    database_url: str = "sqlite:///./data/tickets.db"
    store_max_retries: int = 2
    store_retry_base_delay: float = 0.1  # seconds, doubled on each attempt

    # Remote service
    default_api_url: str = "https://tickets-api-production-bb7a.up.railway.app/api"
    http_timeout_seconds: float = 10.0
    ticket_page_size: int = 600
    user_page_size: int = 300

    # Synchronization
    sync_min_interval_seconds: int = 300  # 5 minutes between unforced runs
    sync_interval_seconds: int = 0  # periodic trigger, 0 disables
    prune_old_synced_tickets: bool = True

    # Ticket issuance
    special_codes: str = "V001,E001,G001,P001,X001"
    ticket_uuid_namespace: str = "1b671a64-40d5-491e-99b0-da01ff1f3341"

    # Operator feedback
    feedback_clear_seconds: float = 1.0
    issue_feedback_clear_seconds: float = 0.5

    # Backups
    backup_export_dir: Optional[str] = None
    backup_private_dir: str = "./data/backups"

    # Timezone - local wall clock when unset
    timezone: Optional[str] = None

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    @field_validator("default_api_url")
    @classmethod
    def validate_default_api_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("default_api_url must start with http:// or https://")
        return v

    @field_validator("special_codes")
    @classmethod
    def validate_special_codes(cls, v: str) -> str:
        return ",".join(code.strip() for code in v.split(",") if code.strip())

    @property
    def special_codes_list(self) -> List[str]:
        """Reserved override codes exempt from duplicate checking."""
        return [code for code in self.special_codes.split(",") if code]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
