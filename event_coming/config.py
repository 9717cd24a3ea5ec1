"""
Event Coming — Centralized configuration.

Loads all settings from .env and validates them.
Every component receives its own frozen config object built from these
settings, so no defaults are scattered through the code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from event_coming/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/event_coming.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # WhatsApp Cloud API (empty token → sends are logged and skipped)
    WHATSAPP_API_URL: str = "https://graph.facebook.com"
    WHATSAPP_API_VERSION: str = "v18.0"
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""

    # Scheduler sweep
    SCHEDULER_INTERVAL_SECONDS: int = 30
    SCHEDULER_BATCH_SIZE: int = 100
    SCHEDULER_MAX_RETRIES: int = 3
    SCHEDULER_CLAIM_TTL_SECONDS: int = 300
    SCHEDULER_TASK_TIMEOUT_SECONDS: int = 60
    PARTICIPANT_PAGE_SIZE: int = 1000

    # Caches
    LOCATION_DEFAULT_TTL_HOURS: int = 24
    CONFIRMATION_TTL_HOURS: int = 24
    CACHE_SCAN_COUNT: int = 100

    # ETA
    ETA_AVERAGE_SPEED_KMH: int = 30
    ETA_HISTORY_WINDOW_MINUTES: int = 15

    LOG_LEVEL: str = "INFO"

    @field_validator(
        "SCHEDULER_INTERVAL_SECONDS",
        "SCHEDULER_BATCH_SIZE",
        "SCHEDULER_MAX_RETRIES",
        "SCHEDULER_CLAIM_TTL_SECONDS",
        "SCHEDULER_TASK_TIMEOUT_SECONDS",
        "PARTICIPANT_PAGE_SIZE",
        "LOCATION_DEFAULT_TTL_HOURS",
        "CONFIRMATION_TTL_HOURS",
        "CACHE_SCAN_COUNT",
        "ETA_AVERAGE_SPEED_KMH",
        "ETA_HISTORY_WINDOW_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be a positive integer, got {value}")
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment; unset keys fall back to model defaults."""
    values = {
        name: os.environ[name]
        for name in Settings.model_fields
        if os.getenv(name) not in (None, "")
    }
    return Settings(**values)


# Singleton, imported by other modules as:
#   from event_coming.config import settings
settings = _load_settings()


# ---------------------------------------------------------------------------
# Per-component configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchedulerConfig:
    """Limits and timings used by the scheduler and its sweep worker."""

    max_retries: int = 3
    batch_size: int = 100
    interval_seconds: float = 30.0
    claim_ttl_seconds: int = 300
    task_timeout_seconds: float = 60.0
    participant_page_size: int = 1000

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> SchedulerConfig:
        s = s or settings
        return cls(
            max_retries=s.SCHEDULER_MAX_RETRIES,
            batch_size=s.SCHEDULER_BATCH_SIZE,
            interval_seconds=float(s.SCHEDULER_INTERVAL_SECONDS),
            claim_ttl_seconds=s.SCHEDULER_CLAIM_TTL_SECONDS,
            task_timeout_seconds=float(s.SCHEDULER_TASK_TIMEOUT_SECONDS),
            participant_page_size=s.PARTICIPANT_PAGE_SIZE,
        )


@dataclass(frozen=True)
class LocationCacheConfig:
    default_ttl_hours: int = 24

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> LocationCacheConfig:
        s = s or settings
        return cls(default_ttl_hours=s.LOCATION_DEFAULT_TTL_HOURS)


@dataclass(frozen=True)
class ETAConfig:
    average_speed_kmh: float = 30.0
    history_window_minutes: int = 15

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> ETAConfig:
        s = s or settings
        return cls(
            average_speed_kmh=float(s.ETA_AVERAGE_SPEED_KMH),
            history_window_minutes=s.ETA_HISTORY_WINDOW_MINUTES,
        )


@dataclass(frozen=True)
class EventCacheConfig:
    confirmation_ttl_hours: int = 24
    scan_count: int = 100

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> EventCacheConfig:
        s = s or settings
        return cls(
            confirmation_ttl_hours=s.CONFIRMATION_TTL_HOURS,
            scan_count=s.CACHE_SCAN_COUNT,
        )
