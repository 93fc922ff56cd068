"""Centralized settings for the PULL social trading core.

Uses pydantic-settings to load from environment variables (prefixed PULL_)
with defaults matching the platform's production thresholds.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Platform settings loaded from environment variables."""

    # --- Copy trading ---
    copy_max_copies_per_user: int = 10
    copy_max_copiers_per_trader: int = 10_000
    copy_min_copy_amount: float = 10.0
    copy_default_delay_seconds: int = 0
    copy_platform_fee_percent: float = 0.5
    copy_fan_out_limit: int = 1000

    # --- Fraud detection ---
    fraud_min_trades: int = 10
    fraud_default_period_days: int = 30
    fraud_wash_trading_self_trade_ratio: float = 0.1
    fraud_manipulation_round_trip_ratio: float = 0.3
    fraud_bot_behavior_time_std_ms: float = 100.0
    fraud_bot_behavior_size_cv: float = 0.1
    fraud_round_trip_window_ms: int = 3_600_000

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "pull-social"

    model_config = {
        "env_prefix": "PULL_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
