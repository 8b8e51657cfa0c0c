"""
api.deps
========

FastAPI dependency providers.

`get_engine` returns one SQL-backed :class:`~duewatch.engine.ComplianceEngine`
per process, built from :pydata:`duewatch.settings.settings`.  Tests swap
it out through ``app.dependency_overrides``.
"""

from functools import lru_cache

from duewatch.db import Database
from duewatch.engine import ComplianceEngine, engine_from_settings
from duewatch.settings import Settings, settings


@lru_cache
def get_settings() -> Settings:
    """Return application settings."""
    return settings


@lru_cache
def get_database() -> Database:
    """Singleton database handle (tables created on first use)."""
    cfg = get_settings()
    db = Database(cfg.db_url, echo=cfg.db_echo).open()
    db.create_all()
    return db


@lru_cache
def get_engine() -> ComplianceEngine:
    """Singleton engine over the persistent store (persists across requests)."""
    return engine_from_settings(get_settings(), get_database())


def close_resources() -> None:
    """Close whatever the providers above opened (called on app shutdown)."""
    if get_engine.cache_info().currsize:
        get_engine().close()
        get_engine.cache_clear()
    if get_database.cache_info().currsize:
        get_database().close()
        get_database.cache_clear()
