"""
Module: config.py
Description: Environment-driven settings for the analytics engine.

Every tunable threshold used by the forecasting, anomaly and budget
components is read once from the environment (or a local .env file)
and exposed as a frozen AnalyticsSettings instance.

Usage:
    from config import get_settings
    settings = get_settings()
    settings.anomaly_z_threshold  # 2.5

Author: Budget Analytics Team
Created: 2025-02-10
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass(frozen=True)
class AnalyticsSettings:
    """Tunable parameters for the analytics pipeline."""

    database_url: str = "sqlite:///./budget_analytics.db"

    # History windows (days)
    lookback_days: int = 365
    min_history_days: int = 30
    anomaly_history_days: int = 90
    trend_min_days: int = 14

    # Pattern detection / model selection
    trend_slope_threshold: float = 0.01       # |slope| / mean, per day
    seasonality_amplitude_threshold: float = 0.25
    ambiguity_band_low: float = 0.8
    ambiguity_band_high: float = 1.2

    # Anomaly detection
    anomaly_z_threshold: float = 2.5
    anomaly_iqr_multiplier: float = 1.5
    anomaly_window_days: int = 7
    anomaly_min_transactions: int = 10

    # Budget analytics
    budget_tolerance_percentage: float = 20.0
    budget_velocity_days: int = 7

    # Caller-owned result cache
    cache_ttl_seconds: int = 300

    @classmethod
    def from_env(cls) -> "AnalyticsSettings":
        """Build settings from ANALYTICS_* environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            lookback_days=_env_int("ANALYTICS_LOOKBACK_DAYS", cls.lookback_days),
            min_history_days=_env_int("ANALYTICS_MIN_HISTORY_DAYS", cls.min_history_days),
            anomaly_history_days=_env_int("ANALYTICS_ANOMALY_HISTORY_DAYS", cls.anomaly_history_days),
            trend_min_days=_env_int("ANALYTICS_TREND_MIN_DAYS", cls.trend_min_days),
            trend_slope_threshold=_env_float("ANALYTICS_TREND_SLOPE_THRESHOLD", cls.trend_slope_threshold),
            seasonality_amplitude_threshold=_env_float(
                "ANALYTICS_SEASONALITY_THRESHOLD", cls.seasonality_amplitude_threshold
            ),
            ambiguity_band_low=_env_float("ANALYTICS_AMBIGUITY_BAND_LOW", cls.ambiguity_band_low),
            ambiguity_band_high=_env_float("ANALYTICS_AMBIGUITY_BAND_HIGH", cls.ambiguity_band_high),
            anomaly_z_threshold=_env_float("ANALYTICS_ANOMALY_Z_THRESHOLD", cls.anomaly_z_threshold),
            anomaly_iqr_multiplier=_env_float("ANALYTICS_ANOMALY_IQR_MULTIPLIER", cls.anomaly_iqr_multiplier),
            anomaly_window_days=_env_int("ANALYTICS_ANOMALY_WINDOW_DAYS", cls.anomaly_window_days),
            anomaly_min_transactions=_env_int(
                "ANALYTICS_ANOMALY_MIN_TRANSACTIONS", cls.anomaly_min_transactions
            ),
            budget_tolerance_percentage=_env_float(
                "ANALYTICS_BUDGET_TOLERANCE", cls.budget_tolerance_percentage
            ),
            budget_velocity_days=_env_int("ANALYTICS_BUDGET_VELOCITY_DAYS", cls.budget_velocity_days),
            cache_ttl_seconds=_env_int("ANALYTICS_CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
        )


@lru_cache(maxsize=1)
def get_settings() -> AnalyticsSettings:
    """Return process-wide settings, read once from the environment."""
    return AnalyticsSettings.from_env()
