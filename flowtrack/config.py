"""
Configuration Management Module

Responsibilities:
1. Read tracking and analytics settings from environment variables
2. Fallback to flowtrack_config.json for bottleneck tuning
3. Config validation and defaults

Environment Variables:
    FLOWTRACK_RECEIPT_TOLERANCE - absolute sent/received tolerance (default: 0.01)
    FLOWTRACK_DEFAULT_UNIT      - unit applied when none is given (default: KG)
    FLOWTRACK_DB_PATH           - SQLite file (default: data/flowtrack.db)
    FLOWTRACK_LOG_LEVEL         - root log level (default: INFO)
    FLOWTRACK_BOTTLENECK_*      - bottleneck weights, bands and severity thresholds
"""

import json
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from fastapi import Request
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flowtrack.database.connection import Database


class TrackingConfig(BaseSettings):
    """Recorder and transfer tracker settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    receipt_tolerance: Decimal = Field(
        default=Decimal("0.01"), ge=0, description="Max |received - sent| still treated as RECEIVED"
    )
    default_unit: str = Field(default="KG", min_length=1, description="Unit used when none is supplied")
    db_path: Path = Field(default=Path("data/flowtrack.db"), description="SQLite database file")
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class BottleneckConfig(BaseSettings):
    """Normalization bands, weights and severity thresholds for bottleneck scoring."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWTRACK_BOTTLENECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    yield_weight: float = Field(0.4, ge=0, le=1)
    loss_weight: float = Field(0.3, ge=0, le=1)
    time_weight: float = Field(0.3, ge=0, le=1)

    # Deficit (percentage points) at which the yield sub-metric saturates
    yield_deficit_band: float = Field(30.0, gt=0)
    # Waste + rework as % of stage input at which the loss sub-metric saturates
    loss_band: float = Field(20.0, gt=0)
    expected_processing_hours: float = Field(4.0, ge=0)
    worst_processing_hours: float = Field(12.0, gt=0)

    critical_threshold: float = Field(70.0, ge=0, le=100)
    moderate_threshold: float = Field(40.0, ge=0, le=100)

    @model_validator(mode="after")
    def validate_bands(self) -> "BottleneckConfig":
        total = self.yield_weight + self.loss_weight + self.time_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Bottleneck weights must sum to 1.0, got {total}")
        if self.worst_processing_hours <= self.expected_processing_hours:
            raise ValueError("worst_processing_hours must exceed expected_processing_hours")
        if self.moderate_threshold > self.critical_threshold:
            raise ValueError("moderate_threshold must not exceed critical_threshold")
        return self

    @classmethod
    def load(cls, path: str = "flowtrack_config.json") -> "BottleneckConfig":
        """Load overrides from the ``bottleneck`` section of a JSON file, if present."""
        config_path = Path(path)
        if config_path.exists():
            with config_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            return cls(**data.get("bottleneck", {}))
        return cls()


class Config:
    """Main Config Class - Factory Pattern (NOT Singleton).

    Built once at startup and handed to the services; tests build their own.
    """

    def __init__(self, tracking: TrackingConfig, bottleneck: BottleneckConfig):
        self.tracking = tracking
        self.bottleneck = bottleneck

    @property
    def db_path(self) -> Path:
        return self.tracking.db_path

    @classmethod
    def load(cls, config_path: str = "flowtrack_config.json") -> "Config":
        """Factory method to load config.

        Tracking settings: Environment variables > .env
        Bottleneck settings: flowtrack_config.json > environment variables > defaults
        """
        return cls(
            tracking=TrackingConfig(),
            bottleneck=BottleneckConfig.load(config_path),
        )


@lru_cache()
def get_config() -> Config:
    """Get config instance (cached for performance)."""
    return Config.load()


def get_database(request: Request) -> Database:
    """Get the Database opened at startup via dependency injection."""
    return request.app.state.db
