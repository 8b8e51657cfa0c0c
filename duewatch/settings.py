"""
duewatch.settings
=================

Configuration settings for duewatch.

Module-level constants cover the plain deployment knobs; the pydantic
``Settings`` model carries everything the engine itself is tuned by.
Both read the environment (prefix ``DUEWATCH_``) and may be overridden
from a ``.env`` file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent

# Database settings
# ---------------------------------------------------------------------------
DB_FILE = os.environ.get("DUEWATCH_DB_FILE", str(BASE_DIR / "duewatch.db"))
DB_URL = f"sqlite:///{DB_FILE}"
DB_ECHO = os.environ.get("DUEWATCH_DB_ECHO", "False").lower() == "true"

# API settings
# ---------------------------------------------------------------------------
API_HOST = os.environ.get("DUEWATCH_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("DUEWATCH_API_PORT", "8000"))


# ---------------------------------------------------------------------------
# Pydantic settings model
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Engine settings, loaded from ``DUEWATCH_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="DUEWATCH_", env_file=".env", case_sensitive=False, extra="ignore")

    db_url: str = Field(default=DB_URL, description="SQLAlchemy URL of the event store")
    db_echo: bool = Field(default=DB_ECHO, description="Echo SQL statements")
    catalog_path: Optional[Path] = Field(
        default=None, description="Requirement catalog JSON; the bundled catalog when unset"
    )
    sweep_batch_size: int = Field(default=500, gt=0, description="Events fetched per sweep page")
    relay_batch_size: int = Field(default=500, gt=0, description="Outbox notices relayed per tick")
    webhook_url: Optional[str] = Field(default=None, description="POST reminder notices here when set")
    webhook_timeout: float = Field(default=5.0, gt=0, description="Webhook request timeout in seconds")
    log_level: str = Field(default="INFO", description="Root log level for the CLI")


# Initialize settings
settings = Settings()
