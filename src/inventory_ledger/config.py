"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Inventory Ledger Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    log_level: str = Field(default="INFO", description="Root log level.")
    host: str = Field(default="0.0.0.0", description="Interface uvicorn binds to.")
    port: int = Field(default=8000, gt=0)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./inventory.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on waiting for a row lock or statement.",
    )
    product_service_url: str = Field(
        default="http://product-catalog-service:3002",
        description="Base URL of the product catalog service.",
    )
    product_service_timeout: float = Field(default=3.0, gt=0)
    movement_page_size: int = Field(
        default=100,
        gt=0,
        description="Maximum rows returned by the filtered movement listing.",
    )
    history_default_limit: int = Field(default=50, gt=0)
    alert_stats_window_days: int = Field(default=30, gt=0)

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value

    @field_validator("product_service_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
