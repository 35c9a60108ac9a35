"""
Тесты конфигурации
"""

import pytest

from marketplace.core.config import Config, Settings


class TestConfig:
    def test_defaults_are_valid(self):
        assert Config.validate()

    def test_sqlite_url_from_path(self, monkeypatch):
        monkeypatch.setattr(Config, "DATABASE_URL", None)
        monkeypatch.setattr(Config, "DATABASE_PATH", "data/test.db")

        assert Config.get_database_url() == "sqlite+aiosqlite:///data/test.db"

    def test_explicit_database_url(self, monkeypatch):
        monkeypatch.setattr(Config, "DATABASE_URL", "postgresql+asyncpg://db/marketplace")

        assert Config.get_database_url() == "postgresql+asyncpg://db/marketplace"

    def test_production_requires_gateway_key(self, monkeypatch):
        monkeypatch.setattr(Config, "ENVIRONMENT", "production")
        monkeypatch.setattr(Config, "PAYSTACK_SECRET_KEY", "")

        with pytest.raises(ValueError, match="PAYSTACK_SECRET_KEY"):
            Config.validate()

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("PLATFORM_COMMISSION_BPS", 10001),
            ("PLATFORM_COMMISSION_BPS", -5),
            ("PAYOUT_TRIGGER", "shipped"),
            ("MAX_PAYOUT_RETRIES", 0),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setattr(Config, name, value)

        with pytest.raises(ValueError):
            Config.validate()


def test_settings_from_config(monkeypatch):
    monkeypatch.setattr(Config, "PLATFORM_COMMISSION_BPS", 1500)
    monkeypatch.setattr(Config, "PAYOUT_TRIGGER", "delivered")
    monkeypatch.setattr(Config, "COMMIT_WINDOW_HOURS", 24)

    settings = Settings.from_config()

    assert settings.commission_bps == 1500
    assert settings.payout_trigger == "delivered"
    assert settings.commit_window_hours == 24
    assert settings.max_payout_retries == Config.MAX_PAYOUT_RETRIES


def test_settings_are_immutable():
    settings = Settings()

    with pytest.raises(AttributeError):
        settings.commission_bps = 0
