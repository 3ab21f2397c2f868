"""Database configuration settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DB_PATH = Path("~/.quota-proxy").expanduser() / "quota.db"


class DatabaseSettings(BaseSettings):
    """SQLite database location."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE__",
        case_sensitive=False,
        extra="ignore",
    )

    path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite database file")
    echo: bool = Field(default=False, description="Log SQL statements")
