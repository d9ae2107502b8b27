"""Pydantic schema validation for config.yaml.

Called on first config load to catch misconfigurations before a session
is built.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from gamecore.catalog import AssetCategory
from gamecore.models import FD_DURATIONS, AdminSettings

logger = logging.getLogger(__name__)


class GameConfig(BaseModel):
    """Fixed rules of the 20-year game."""
    total_years: int = Field(ge=4, le=20, default=20)
    month_duration_ms: int = Field(gt=0, default=2000)
    savings_interest_rate: float = Field(ge=0.0, le=0.5, default=0.025)
    max_fixed_deposits: int = Field(ge=1, le=10, default=3)
    fd_break_penalty_pct: float = Field(ge=0.0, le=100.0, default=1.0)
    fd_rates: dict[int, float] = Field(
        default_factory=lambda: {3: 5.5, 12: 7.0, 24: 7.25, 36: 7.5},
    )
    no_unlock_last_years: int = Field(ge=0, le=10, default=3)
    quiz_questions_per_category: int = Field(ge=1, le=100, default=5)

    @field_validator("fd_rates")
    @classmethod
    def validate_fd_durations(cls, v: dict[int, float]) -> dict[int, float]:
        unknown = set(v) - set(FD_DURATIONS)
        if unknown:
            raise ValueError(f"fd_rates has unsupported durations: {sorted(unknown)}")
        for duration, rate in v.items():
            if rate < 0:
                raise ValueError(f"fd_rates[{duration}] must be >= 0, got {rate}")
        return v

    @model_validator(mode="after")
    def validate_unlock_window(self) -> "GameConfig":
        if self.no_unlock_last_years >= self.total_years:
            raise ValueError(
                f"no_unlock_last_years ({self.no_unlock_last_years}) must be < total_years ({self.total_years})"
            )
        return self

    class Config:
        extra = "allow"


class CategoriesConfig(BaseModel):
    disabled: list[AssetCategory] = Field(
        default_factory=lambda: [AssetCategory.CRYPTO, AssetCategory.FOREX],
    )

    @field_validator("disabled")
    @classmethod
    def reject_banking(cls, v: list[AssetCategory]) -> list[AssetCategory]:
        if AssetCategory.BANKING in v:
            raise ValueError("BANKING cannot be disabled")
        return v


class ChannelConfig(BaseModel):
    key_exchange_timeout_seconds: float = Field(gt=0, le=120, default=10)
    max_payload_age_seconds: float = Field(gt=0, default=30)
    resync_retry_ticks: int = Field(ge=1, le=60, default=3)

    class Config:
        extra = "allow"


class PricesConfig(BaseModel):
    data_dir: str = "data/prices"
    history_months: int = Field(ge=1, le=240, default=12)


class DatabaseConfig(BaseModel):
    path: str = "data/market_years.db"


class LoggingConfig(BaseModel):
    dir: str = "data/logs"
    level: str = "INFO"
    max_file_mb: int = Field(ge=1, le=1024, default=10)
    backup_count: int = Field(ge=0, le=100, default=5)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v!r}")
        return v.upper()


class MarketYearsConfig(BaseModel):
    """Top-level config schema."""
    game: GameConfig = Field(default_factory=GameConfig)
    admin: AdminSettings = Field(default_factory=AdminSettings)
    categories: CategoriesConfig = Field(default_factory=CategoriesConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    prices: PricesConfig = Field(default_factory=PricesConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        extra = "allow"

    @model_validator(mode="after")
    def warn_disabled_selection(self) -> "MarketYearsConfig":
        """Warn if the default admin selection includes a disabled category."""
        clash = set(self.admin.selected_categories) & set(self.categories.disabled)
        for category in sorted(clash):
            logger.warning(
                "admin.selected_categories includes %s, which is disabled and will never unlock",
                category.value,
            )
        return self


def validate_config_dict(raw: dict[str, Any]) -> MarketYearsConfig:
    """Validate a raw config dict. Raises pydantic.ValidationError on failure."""
    return MarketYearsConfig.model_validate(raw)
