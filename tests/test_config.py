"""Tests for configuration management."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from rm_sync.config import DEFAULT_API_BASE_URL, Config, Settings


class TestSettings:
    """Test Settings defaults and validation."""

    def test_defaults(self) -> None:
        """Test default values."""
        settings = Settings()

        assert settings.api_base_url == DEFAULT_API_BASE_URL
        assert settings.request_timeout == 30.0
        assert settings.write_delay == 0.1
        assert settings.run_timeout == 300.0
        assert settings.max_attempts == 3
        assert settings.rate_limit_base_delay == 2.0
        assert settings.retry_delay == 2.0
        assert settings.page_size == 1000
        assert settings.max_pages == 10
        assert settings.match_threshold == 0.65
        assert settings.default_user_id is None

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_attempts", 0),
            ("run_timeout", 0),
            ("write_delay", -1),
            ("match_threshold", 1.5),
        ],
    )
    def test_rejects_invalid_values(self, field: str, value: float) -> None:
        """Test field constraints."""
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestConfig:
    """Test Config functionality."""

    def test_default_database_url(self, config: Config, temp_config_dir: Path) -> None:
        """Test that the database defaults to SQLite in the config directory."""
        assert config.database_url == f"sqlite+aiosqlite:///{temp_config_dir / 'rm-sync.db'}"

    def test_explicit_database_url(self, config: Config) -> None:
        """Test that a configured database URL wins."""
        config.update_settings(database_url="postgresql://sync@db/rm")

        assert config.database_url == "postgresql://sync@db/rm"

    def test_update_settings_persists(self, config: Config, temp_config_dir: Path) -> None:
        """Test that updates are written to settings.yaml and reloaded."""
        config.update_settings(write_delay=0.5, default_user_id="user-1")

        with open(temp_config_dir / "settings.yaml") as f:
            raw = yaml.safe_load(f)
        assert raw["write_delay"] == 0.5
        assert raw["default_user_id"] == "user-1"

        reloaded = Config(temp_config_dir)
        assert reloaded.settings.write_delay == 0.5
        assert reloaded.settings.max_attempts == 3

    def test_update_settings_validates(self, config: Config, temp_config_dir: Path) -> None:
        """Test that invalid updates are rejected and not saved."""
        with pytest.raises(ValidationError):
            config.update_settings(max_attempts=0)

        assert not (temp_config_dir / "settings.yaml").exists()
        assert config.settings.max_attempts == 3

    def test_resolve_user(self, config: Config) -> None:
        """Test explicit and default user resolution."""
        assert config.resolve_user(None) is None
        assert config.resolve_user("explicit") == "explicit"

        config.update_settings(default_user_id="user-1")

        assert config.resolve_user(None) == "user-1"
        assert config.resolve_user("explicit") == "explicit"
