"""Configuration loader for the TouchGrass ingestion pipeline."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from touchgrass.configs.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def load_ingestion_config(path: Path, settings: Settings | None = None) -> dict:
    """
    Load the YAML source table, substituting ${SETTING} placeholders.

    Args:
        path: YAML file to read
        settings: Settings used for substitution (cached settings by default)

    Returns:
        Parsed configuration (empty dict for an empty file)

    Raises:
        FileNotFoundError: if the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing config at {path}")

    settings = settings or get_settings()
    content = path.read_text(encoding="utf-8")

    # Substitute environment variables from settings
    for key, value in settings.model_dump().items():
        placeholder = f"${{{key}}}"
        if placeholder in content:
            # Handle SecretStr
            val_str = (
                value.get_secret_value()
                if hasattr(value, "get_secret_value")
                else str(value)
            )
            content = content.replace(placeholder, val_str)

    return yaml.safe_load(content) or {}


class Config:
    """Access to the ingestion source table."""

    @classmethod
    @lru_cache
    def load_ingestion_config(cls) -> dict:
        """Load the YAML configuration named by INGESTION_CONFIG_PATH."""
        return load_ingestion_config(get_settings().INGESTION_CONFIG_PATH)

    @classmethod
    def get_source_config(cls, source_name: str) -> dict[str, Any] | None:
        """Get the configuration of one source, or None if unknown."""
        sources = cls.load_ingestion_config().get("sources") or {}
        return sources.get(source_name)

    @classmethod
    def list_sources(cls, enabled_only: bool = False) -> dict[str, dict[str, Any]]:
        """All configured sources keyed by name."""
        sources = cls.load_ingestion_config().get("sources") or {}
        if enabled_only:
            return {
                name: conf for name, conf in sources.items() if conf.get("enabled", True)
            }
        return dict(sources)

    @classmethod
    def get_source_type(cls, source_name: str | None) -> str | None:
        """Configured raw shape of a source, falling back to the default shape."""
        config = cls.load_ingestion_config()
        default = (config.get("defaults") or {}).get("source_type")
        if not source_name:
            return default
        source_config = cls.get_source_config(source_name)
        if source_config is None:
            logger.debug(f"Source '{source_name}' not configured, using default shape")
            return default
        return source_config.get("source_type", default)
