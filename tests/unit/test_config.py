"""
Unit tests for configuration models.
"""

import pytest
from pydantic import ValidationError

from mdb_wrapper.config import RetrySettings, WrapperOptions


class TestRetrySettings:
    """Test backoff parameter validation."""

    def test_defaults(self):
        settings = RetrySettings()

        assert settings.max_retries == 3
        assert settings.initial_delay_ms == 100
        assert settings.max_delay_ms == 5000
        assert settings.backoff_multiplier == 2.0

    @pytest.mark.parametrize(
        "values",
        [
            {"max_retries": -1},
            {"backoff_multiplier": 0.5},
            {"initial_delay_ms": 200, "max_delay_ms": 100},
        ],
    )
    def test_invalid_values(self, values):
        with pytest.raises(ValidationError):
            RetrySettings(**values)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MDB_WRAPPER_MAX_RETRIES", "5")
        monkeypatch.setenv("MDB_WRAPPER_INITIAL_DELAY_MS", "50")
        monkeypatch.setenv("MDB_WRAPPER_MAX_DELAY_MS", "800")
        monkeypatch.setenv("MDB_WRAPPER_BACKOFF_MULTIPLIER", "3")

        settings = RetrySettings.from_env()

        assert settings == RetrySettings(
            max_retries=5, initial_delay_ms=50, max_delay_ms=800, backoff_multiplier=3.0
        )


class TestWrapperOptions:
    """Test factory options."""

    def test_database_required(self):
        with pytest.raises(ValidationError):
            WrapperOptions(database="")

    def test_frozen(self):
        options = WrapperOptions(database="shop")

        with pytest.raises(ValidationError):
            options.debug = True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_NAME", "shop")
        monkeypatch.setenv("MONGO_URI", "mongodb://db:27017")
        monkeypatch.setenv("DATA_API_URL", "https://data.example.com/v1")
        monkeypatch.setenv("DATA_API_KEY", "secret")
        monkeypatch.setenv("MDB_WRAPPER_DEBUG", "true")

        def hook(collection, payload):
            return None

        options = WrapperOptions.from_env(use_driver=True, set_on_insert=hook)

        assert options.database == "shop"
        assert options.connection_string == "mongodb://db:27017"
        assert options.api_url == "https://data.example.com/v1"
        assert options.api_key == "secret"
        assert options.debug is True
        assert options.use_driver is True
        assert options.set_on_insert is hook

    def test_overrides_win_over_env(self, monkeypatch):
        monkeypatch.setenv("DB_NAME", "shop")

        options = WrapperOptions.from_env(database="other")

        assert options.database == "other"
