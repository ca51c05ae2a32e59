"""Unit tests for billing settings."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from src.services import config
from src.services.config import BillingSettings, get_settings, reset_settings


class TestBillingSettings:
    """Tests for BillingSettings defaults and overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BULK_WRITE_LIMIT", raising=False)
        settings = BillingSettings(_env_file=None)

        assert settings.bulk_write_limit == 400
        assert settings.tax_rate == Decimal("0.02")
        assert settings.senior_discount_rate == Decimal("0.05")
        assert settings.penalty_rate == Decimal("0.10")
        assert settings.minimum_charge == Decimal("191.00")
        assert settings.disconnection_threshold == 3
        assert settings.telegram_bot_token is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("BULK_WRITE_LIMIT", "50")
        monkeypatch.setenv("PENALTY_RATE", "0.15")

        settings = BillingSettings(_env_file=None)

        assert settings.bulk_write_limit == 50
        assert settings.penalty_rate == Decimal("0.15")

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MAX_CONCURRENT_ACCOUNTS=3\nUNRELATED_KEY=x\n")

        settings = BillingSettings(_env_file=str(env_file))

        assert settings.max_concurrent_accounts == 3

    @pytest.mark.parametrize("field", ["bulk_write_limit", "max_concurrent_accounts"])
    def test_limits_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            BillingSettings(_env_file=None, **{field: 0})

    def test_retries_must_not_be_negative(self):
        with pytest.raises(ValidationError):
            BillingSettings(_env_file=None, bulk_write_retries=-1)


class TestGetSettings:
    def test_cached_until_reset(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        reset_settings()
        try:
            first = get_settings()
            assert get_settings() is first

            reset_settings()
            assert config._settings_instance is None
            assert get_settings() is not first
        finally:
            reset_settings()
