"""
Configuration Management Module

Configures store parameters via environment variables or .env file.
Supports SQLite (default) and PostgreSQL databases.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Store Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    """

    # Application Config
    APP_NAME: str = "relstore"
    DEBUG: bool = False

    # Database Config
    # Supports "sqlite" or "postgresql"
    DATABASE_TYPE: Literal["sqlite", "postgresql"] = "sqlite"
    # SQLite default database path, PostgreSQL requires full connection string
    DATABASE_URL: str = "sqlite+aiosqlite:///./relstore.db"
    # Echo every executed statement through the engine logger
    LOG_SQL: bool = False

    # Executor Config
    # Reflect tables missing from the executor's MetaData on first use
    REFLECT_TABLES: bool = True

    # Relationship Config
    # Wrap base + dependent inserts of create_related in a single transaction.
    # False keeps the historical behavior: each insert commits on its own.
    ATOMIC_RELATED_WRITES: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get store configuration (Singleton)

    Uses lru_cache to ensure configuration is loaded only once.

    Returns:
        Settings: Store configuration instance
    """
    return Settings()
