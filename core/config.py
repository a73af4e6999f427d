"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Lightning Batch Payments Service", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Ledger (GraphQL)
    ledger_api_url: str = Field(default="https://api.blink.sv/graphql", alias="LEDGER_API_URL")
    ledger_api_key: Optional[str] = Field(default=None, alias="LEDGER_API_KEY")
    home_domains: str = Field(
        default="blink.sv,pay.blink.sv,galoy.io,staging.blink.sv,pay.staging.blink.sv",
        alias="HOME_DOMAINS",
        description="Comma-separated Lightning Address domains served by the ledger",
    )
    home_ln_domain: str = Field(default="blink.sv", alias="HOME_LN_DOMAIN")

    # Network
    http_timeout: float = Field(default=15.0, gt=0, alias="HTTP_TIMEOUT")
    http_max_retries: int = Field(default=3, ge=1, le=10, alias="HTTP_MAX_RETRIES")

    # Validation fan-out
    validation_concurrency: int = Field(default=10, alias="VALIDATION_CONCURRENCY")
    validation_delay_ms: int = Field(default=100, ge=0, alias="VALIDATION_DELAY_MS")
    lnurl_verify_checksum: bool = Field(default=True, alias="LNURL_VERIFY_CHECKSUM")

    # Execution
    payment_delay_ms: int = Field(default=100, ge=0, alias="PAYMENT_DELAY_MS")

    # Fee estimation
    fee_rate: float = Field(default=0.003, ge=0, alias="FEE_RATE")
    min_fee_sats: int = Field(default=1, ge=0, alias="MIN_FEE_SATS")
    max_fee_rate: float = Field(default=0.01, ge=0, alias="MAX_FEE_RATE")

    # Input limits
    max_file_bytes: int = Field(default=5 * 1024 * 1024, gt=0, alias="MAX_FILE_BYTES")
    max_recipients: int = Field(default=1000, gt=0, alias="MAX_RECIPIENTS")

    # Storage
    temp_storage_path: str = Field(default="files", alias="STORAGE_PATH")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("validation_concurrency")
    @classmethod
    def validate_concurrency(cls, v):
        """Validate concurrency setting."""
        if v < 1:
            raise ValueError("Validation concurrency must be at least 1")
        if v > 50:
            raise ValueError("Validation concurrency should not exceed 50")
        return v

    @field_validator("ledger_api_url")
    @classmethod
    def validate_ledger_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("Ledger API URL must start with http:// or https://")
        return v

    @property
    def home_domain_list(self) -> List[str]:
        """Home domains as a lowercased list."""
        return [d.strip().lower() for d in self.home_domains.split(",") if d.strip()]

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.temp_storage_path).mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
