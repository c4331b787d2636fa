"""Unit tests for the ingestion YAML loader."""

from unittest.mock import patch

import pytest

from touchgrass.configs.config import Config, load_ingestion_config
from touchgrass.configs.settings import Settings


@pytest.fixture
def settings():
    return Settings(_env_file=None, DEDUPLICATION_STRATEGY="composite", DEFAULT_CURRENCY="EUR")


@pytest.fixture(autouse=True)
def clear_config_cache():
    Config.load_ingestion_config.cache_clear()
    yield
    Config.load_ingestion_config.cache_clear()


def test_load_substitutes_settings(tmp_path, settings):
    path = tmp_path / "ingestion.yaml"
    path.write_text(
        "defaults:\n"
        "  deduplication_strategy: ${DEDUPLICATION_STRATEGY}\n"
        "  default_currency: ${DEFAULT_CURRENCY}\n"
        "sources:\n"
        "  crawler:\n"
        "    source_type: crawler-shape\n",
        encoding="utf-8",
    )

    config = load_ingestion_config(path, settings)

    assert config["defaults"] == {"deduplication_strategy": "composite", "default_currency": "EUR"}
    assert config["sources"]["crawler"]["source_type"] == "crawler-shape"


def test_load_substitutes_secrets(tmp_path):
    path = tmp_path / "ingestion.yaml"
    path.write_text("search:\n  password: ${SEARCH_PASSWORD}\n", encoding="utf-8")

    config = load_ingestion_config(path, Settings(_env_file=None, SEARCH_PASSWORD="s3cret"))

    assert config["search"]["password"] == "s3cret"


def test_empty_file(tmp_path, settings):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_ingestion_config(path, settings) == {}


def test_missing_file(tmp_path, settings):
    with pytest.raises(FileNotFoundError):
        load_ingestion_config(tmp_path / "missing.yaml", settings)


class TestConfig:
    """Tests against the packaged ingestion.yaml."""

    def test_packaged_sources(self):
        sources = Config.list_sources()
        assert sources["openwebninja"]["source_type"] == "api-shape"
        assert sources["clockoutdc"]["source_type"] == "listing-shape"
        assert sources["crawler"]["source_type"] == "crawler-shape"

    def test_enabled_only(self):
        assert "admin-test" in Config.list_sources()
        assert "admin-test" not in Config.list_sources(enabled_only=True)

    def test_get_source_type(self):
        assert Config.get_source_type("washingtonian") == "listing-shape"
        assert Config.get_source_type("unknown-source") == "already-normalized"
        assert Config.get_source_type(None) == "already-normalized"

    def test_get_source_config(self):
        assert Config.get_source_config("seed-data")["enabled"] is True
        assert Config.get_source_config("nope") is None

    def test_custom_config_path(self, tmp_path):
        path = tmp_path / "ingestion.yaml"
        path.write_text("sources:\n  only:\n    source_type: api-shape\n", encoding="utf-8")
        settings = Settings(_env_file=None, INGESTION_CONFIG_PATH=path)

        with patch("touchgrass.configs.config.get_settings", return_value=settings):
            assert list(Config.list_sources()) == ["only"]
