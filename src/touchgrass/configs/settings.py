"""Centralized settings management for the TouchGrass ingestion service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url


class Settings(BaseSettings):
    """
    Application settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file in the
    working directory. Only the primary store and search endpoints are
    optional: without them the service falls back to in-memory backends.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # PRIMARY STORE
    # -------------------------------------------------------------------------
    DATABASE_URL: str | None = None
    EVENTS_TABLE: str = "events"

    # -------------------------------------------------------------------------
    # SEARCH INDEX
    # -------------------------------------------------------------------------
    SEARCH_URL: str | None = None
    SEARCH_USERNAME: str | None = None
    SEARCH_PASSWORD: SecretStr | None = None
    SEARCH_INDEX_NAME: str = "events-groups-index"

    # -------------------------------------------------------------------------
    # PIPELINE BEHAVIOUR
    # -------------------------------------------------------------------------
    WRITE_DELAY_SECONDS: float = Field(default=0.1, ge=0)
    ITEM_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    INDEX_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    DEDUPLICATION_STRATEGY: str = "identity"
    DEFAULT_CURRENCY: str = "USD"

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------
    INGESTION_CONFIG_PATH: Path = Path(__file__).resolve().parent / "ingestion.yaml"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Allow extra fields in .env but ignore them in the model
        extra="ignore",
    )

    @property
    def uses_postgres(self) -> bool:
        return bool(self.DATABASE_URL)

    @property
    def uses_search_service(self) -> bool:
        return bool(self.SEARCH_URL)

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Uses sqlalchemy.make_url for robust parsing of complex connection strings.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).

        Raises
        ------
        ValueError
            If DATABASE_URL is not configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")
        url = make_url(self.DATABASE_URL)
        return {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns
    -------
    Settings
        The singleton settings instance.
    """
    return Settings()
