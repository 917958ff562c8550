"""Application configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MARKET_PULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Anthropic API key for inference calls
    anthropic_api_key: str = ""

    # Model used for signal extraction, classification and insights
    inference_model: str = "claude-haiku-4-5-20251001"

    # SQLite database for signals, reputation, leaderboards and audit records
    db_path: Path = Path.home() / ".market-pulse" / "market_pulse.db"

    # SQLite database for workflow execution history (empty = in-memory)
    history_db_path: Path | None = None

    # HTTP request timeout seconds
    http_timeout: float = 30.0

    # Max activity calls executing at once across all workflow instances
    max_concurrent_activities: int = 10

    # History events per execution before a warning is logged
    max_history_events: int = 10_000

    # Market monitor cadence and windows
    monitor_interval_seconds: float = 300.0
    trade_window_minutes: int = 5
    signal_expiry_hours: int = 24
    behavior_min_trades: int = 5
    behavior_confidence_threshold: float = 0.7

    # Daily insight schedule (hour of day, UTC)
    insight_hour_utc: int = 6
    correlation_history_hours: int = 24
    recent_signal_hours: int = 24

    # Market pairs analysed by the daily correlation pass, "A:B" strings
    correlation_pairs: list[str] = []

    # Reputation and leaderboard thresholds
    reputation_min_trades: int = 10
    leaderboard_min_trades: int = 10
    leaderboard_max_entries: int = 100

    # Telegram notifications
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_enabled: bool = False

    @field_validator("insight_hour_utc")
    @classmethod
    def _insight_hour_in_range(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"insight_hour_utc must be in [0, 23], got {v}")
        return v

    @field_validator("behavior_confidence_threshold")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"behavior_confidence_threshold must be in [0, 1], got {v}")
        return v

    @field_validator("monitor_interval_seconds")
    @classmethod
    def _interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"monitor_interval_seconds must be > 0, got {v}")
        return v

    @field_validator("leaderboard_max_entries", "max_concurrent_activities")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}")
        return v

    @field_validator("correlation_pairs")
    @classmethod
    def _pairs_well_formed(cls, v: list[str]) -> list[str]:
        for pair in v:
            left, sep, right = pair.partition(":")
            if not sep or not left or not right:
                raise ValueError(f"correlation pair must look like 'A:B', got {pair!r}")
        return v


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
