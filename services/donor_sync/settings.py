"""
Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files
with validation and type conversion. The settings object is built once
at startup and passed explicitly to the client, stages and pipeline.
"""

from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .matching import SelectionPolicy


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""
    pass


class DonorSyncSettings(BaseSettings):
    """
    Configuration for the donor sync service.

    Settings are loaded in this order of precedence:
    1. Explicit overrides (e.g. CLI arguments)
    2. Environment variables
    3. .env file in current directory
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Mollie API
    mollie_api_key: str = Field(
        validation_alias=AliasChoices("mollie_api_key", "api_key"),
        description="Mollie API key (test_... or live_...)"
    )

    mollie_api_base_url: str = Field(
        default="https://api.mollie.com/v2",
        description="Base URL for the Mollie API"
    )

    api_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300.0,
        description="API request timeout in seconds"
    )

    customer_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Customers fetched in the single customer list call"
    )

    # Input
    csv_path: str = Field(
        description="Path to the donor roster (delimited file)"
    )

    csv_delimiter: str = Field(
        default=",",
        min_length=1,
        max_length=1,
        description="Field delimiter of the donor roster"
    )

    csv_encoding: str = Field(
        default="utf-8",
        description="Preferred encoding of the donor roster"
    )

    # Subscription details
    subscription_description: str = Field(
        default="",
        validation_alias=AliasChoices("subscription_description", "description"),
        description="Description put on every created subscription"
    )

    webhook_url: str = Field(
        default="",
        validation_alias=AliasChoices("webhook_url", "webhook"),
        description="Webhook URL put on every created subscription"
    )

    # Reconciliation behaviour
    selection_policy: SelectionPolicy = Field(
        default=SelectionPolicy.FIRST,
        description="Which mandate/subscription/customer wins when several exist"
    )

    create_concurrency: int = Field(
        default=1,
        ge=1,
        le=20,
        description="Create calls allowed in flight within one stage"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_format: str = Field(
        default="json",
        description="Log output format (json, text)"
    )

    service_name: str = Field(
        default="donor-sync",
        description="Service name for logging"
    )

    environment: str = Field(
        default="development",
        description="Environment name (development, staging, production)"
    )

    @field_validator("mollie_api_key")
    @classmethod
    def validate_api_key(cls, v):
        """Validate API key is not empty."""
        if not v or not v.strip():
            raise ValueError("mollie_api_key cannot be empty")
        return v.strip()

    @field_validator("csv_path")
    @classmethod
    def validate_csv_path(cls, v):
        if not v or not v.strip():
            raise ValueError("csv_path cannot be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format is supported."""
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(sorted(valid_formats))}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name."""
        valid_envs = {"development", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of: {', '.join(sorted(valid_envs))}")
        return v.lower()

    def is_test_mode(self) -> bool:
        """Test-mode API keys never touch real bank accounts."""
        return self.mollie_api_key.startswith("test_")

    def get_api_headers(self) -> dict:
        """Get standard API headers with authentication."""
        return {
            "Authorization": f"Bearer {self.mollie_api_key}",
            "User-Agent": f"{self.service_name}/1.0",
            "Accept": "application/json",
            "Content-Type": "application/json"
        }


def load_settings(**overrides: Any) -> DonorSyncSettings:
    """
    Build settings, turning validation failures into ConfigurationError.

    Overrides with a value of None are ignored so CLI flags that were not
    given fall through to the environment.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return DonorSyncSettings(**values)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise ConfigurationError(
            f"Configuration not in order: {', '.join(fields)}"
        ) from exc

