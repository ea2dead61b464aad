"""
Shared configuration management for the reporting backend.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPORTING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: str = Field(default="")

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        origins = ["*"] if self.env == "local" else []
        origins.extend(o.strip() for o in self.cors_origins.split(",") if o.strip())
        return origins


class ReportingConfig(BaseConfig):
    """Configuration for the reporting service."""

    service_name: str = Field(default="reporting")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8020)

    # Tokens
    jwt_access_secret: str = Field(default="dev-access-secret-change-me-in-production")
    jwt_refresh_secret: str = Field(default="dev-refresh-secret-change-me-in-production")
    jwt_algorithm: str = Field(default="HS256")
    access_token_ttl_seconds: int = Field(default=15 * 60)
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 3600)
    bcrypt_rounds: int = Field(default=12)

    # Cache
    cache_sweep_interval_seconds: float = Field(default=60.0)

    # Vendor data
    vendor_base_url: Optional[str] = Field(default=None)
    vendor_timeout_seconds: float = Field(default=10.0)
    vendor_retry_attempts: int = Field(default=2)
    vendor_failure_threshold: int = Field(default=5)
    vendor_recovery_timeout_seconds: float = Field(default=30.0)

    # Auth endpoint throttling
    auth_rate_limit_requests: int = Field(default=5)
    auth_rate_limit_window_seconds: int = Field(default=15 * 60)
    auth_trust_proxy_headers: bool = Field(default=False)

    # Spreadsheet ledgers
    sales_sheet_id: str = Field(default="")
    sales_sheet_range: str = Field(default="Sales!A:G")
    appraisals_sheet_id: str = Field(default="")
    appraisals_pending_range: str = Field(default="Pending Appraisals!A:O")
    appraisals_completed_range: str = Field(default="Completed Appraisals!A:O")
    error_logs_sheet_id: str = Field(default="")
    error_logs_range: str = Field(default="Errors!A:F")
    recent_errors_limit: int = Field(default=10)

    # Support chat
    chat_mailbox: str = Field(default="chat@example.com")

    # Hosting
    hosting_site_id: str = Field(default="")


def get_config(**overrides) -> ReportingConfig:
    """Build configuration from the environment, applying explicit overrides."""
    return ReportingConfig(**overrides)
