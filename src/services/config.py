"""Billing engine configuration from environment variables and .env file."""

import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class BillingSettings(BaseSettings):
    """Billing configuration loaded from environment variables.

    Pydantic automatically loads values from:
    1. OS environment variables (at instantiation time)
    2. .env file (if env_file is set)

    Rates are Decimals so charge math never touches binary floats.
    """

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields in .env file
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./billing.db",
        description="SQLAlchemy async database URL for the document store",
    )

    # Store / batch limits
    bulk_write_limit: int = Field(
        default=400, description="Maximum operations per bulk write call"
    )
    bulk_write_retries: int = Field(
        default=2, description="Retries for failed operations of a bulk write unit"
    )
    max_concurrent_accounts: int = Field(
        default=8, description="Accounts billed concurrently by one batch"
    )

    # Charge rules
    tax_rate: Decimal = Field(default=Decimal("0.02"), description="Tax on water charge")
    senior_discount_rate: Decimal = Field(
        default=Decimal("0.05"), description="Senior discount on charge plus tax"
    )
    penalty_rate: Decimal = Field(
        default=Decimal("0.10"), description="Penalty on the post-discount amount"
    )
    minimum_charge: Decimal = Field(
        default=Decimal("191.00"), description="Minimum water charge for nonzero usage"
    )

    # Ledger rules
    disconnection_threshold: int = Field(
        default=3, description="Unpaid bills that put an account at disconnection risk"
    )
    bill_number_width: int = Field(default=10, description="Zero-padded bill number width")

    # Notifications
    telegram_bot_token: Optional[str] = Field(
        default=None, description="Bot token; notifications are skipped when unset"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/billing.log", description="Path to log file")

    @field_validator("bulk_write_limit", "max_concurrent_accounts", "disconnection_threshold")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("bulk_write_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value


# Lazy loader to ensure environment is loaded before instantiation
_settings_instance: Optional[BillingSettings] = None


def get_settings() -> BillingSettings:
    """Get or create the settings instance.

    Loads .env from the working directory first so values there are visible
    even when the process environment does not export them.
    """
    global _settings_instance
    if _settings_instance is None:
        env_path = Path(".env")
        if env_path.exists():
            load_dotenv(env_path)
        _settings_instance = BillingSettings()
        logger.debug(
            "Billing settings loaded: bulk_write_limit=%d, max_concurrent_accounts=%d",
            _settings_instance.bulk_write_limit,
            _settings_instance.max_concurrent_accounts,
        )
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings instance (next get_settings() reloads)."""
    global _settings_instance
    _settings_instance = None


__all__ = ["BillingSettings", "get_settings", "reset_settings"]
