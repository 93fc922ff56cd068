"""Tests for environment-driven settings."""

from src.copy_trading import CopyTradingConfig
from src.fraud_detection import FraudDetectionConfig
from src.settings import Settings, get_settings


class TestSettings:
    """Tests for Settings defaults and overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PULL_COPY_MAX_COPIES_PER_USER", raising=False)
        settings = Settings(_env_file=None)
        assert settings.copy_max_copies_per_user == 10
        assert settings.copy_max_copiers_per_trader == 10_000
        assert settings.copy_min_copy_amount == 10.0
        assert settings.copy_platform_fee_percent == 0.5
        assert settings.fraud_min_trades == 10
        assert settings.fraud_default_period_days == 30
        assert settings.fraud_round_trip_window_ms == 3_600_000
        assert settings.service_name == "pull-social"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PULL_COPY_MAX_COPIES_PER_USER", "3")
        monkeypatch.setenv("PULL_FRAUD_MIN_TRADES", "25")
        settings = Settings(_env_file=None)
        assert settings.copy_max_copies_per_user == 3
        assert settings.fraud_min_trades == 25

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestServiceConfigFromSettings:
    """Tests for building service configs from settings."""

    def test_copy_trading_config(self):
        settings = Settings(_env_file=None, copy_max_copies_per_user=4, copy_platform_fee_percent=1.0)
        config = CopyTradingConfig.from_settings(settings)
        assert config.max_copies_per_user == 4
        assert config.platform_fee_percent == 1.0

    def test_fraud_detection_config(self):
        settings = Settings(_env_file=None, fraud_min_trades=20, fraud_bot_behavior_size_cv=0.2)
        config = FraudDetectionConfig.from_settings(settings)
        assert config.min_trades == 20
        assert config.wash_trading_min_trades == 20
        assert config.bot_behavior_size_cv == 0.2
