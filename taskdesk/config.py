"""
TaskDesk — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

# Load .env from project root (one level up from taskdesk/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Storage
    DATABASE_PATH: str = "data/taskdesk.db"

    # HTTP server
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # Logging. DEBUG exposes exception text in 500 responses
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # API client (dashboard data layer)
    API_BASE_URL: str = "http://127.0.0.1:8000"
    API_TIMEOUT_SECONDS: float = 10.0
    API_MAX_RETRIES: int = 3
    API_BACKOFF_BASE_SECONDS: float = 0.5
    API_BACKOFF_MAX_SECONDS: float = 8.0

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in _TRUTHY

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"

    @field_validator("API_MAX_RETRIES", mode="after")
    @classmethod
    def non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("API_MAX_RETRIES must be >= 0")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, exiting on invalid values."""
    try:
        return Settings(
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/taskdesk.db"),
            API_HOST=os.getenv("API_HOST", "127.0.0.1"),
            API_PORT=os.getenv("API_PORT", "8000"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            DEBUG=os.getenv("DEBUG", "false"),
            API_BASE_URL=os.getenv("API_BASE_URL", "http://127.0.0.1:8000"),
            API_TIMEOUT_SECONDS=os.getenv("API_TIMEOUT_SECONDS", "10"),
            API_MAX_RETRIES=os.getenv("API_MAX_RETRIES", "3"),
            API_BACKOFF_BASE_SECONDS=os.getenv("API_BACKOFF_BASE_SECONDS", "0.5"),
            API_BACKOFF_MAX_SECONDS=os.getenv("API_BACKOFF_MAX_SECONDS", "8"),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env:\n{exc}", file=sys.stderr)
        sys.exit(1)


# Imported everywhere as:
#   from taskdesk.config import settings
settings = _load_settings()
