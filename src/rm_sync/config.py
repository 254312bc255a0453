"""Configuration management for the RM synchronizer."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from rm_sync.utils.storage import StorageManager

DEFAULT_API_BASE_URL = "https://api.rm.smartsheet.com/api/v1"


class Settings(BaseModel):
    """Tunable settings, stored in settings.yaml."""

    database_url: str | None = None
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = Field(default=30.0, gt=0)

    # Pause between successive remote writes within a run.
    write_delay: float = Field(default=0.1, ge=0)
    # Wall-clock limit for one whole run.
    run_timeout: float = Field(default=300.0, gt=0)

    max_attempts: int = Field(default=3, ge=1)
    rate_limit_base_delay: float = Field(default=2.0, ge=0)
    retry_delay: float = Field(default=2.0, ge=0)

    page_size: int = Field(default=1000, ge=1)
    max_pages: int = Field(default=10, ge=1)

    match_threshold: float = Field(default=0.65, ge=0, le=1)
    default_user_id: str | None = None


class Config:
    """Loads and updates settings through the storage manager."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            config_dir: Directory for storing configuration.
        """
        self.storage = StorageManager(config_dir)
        self._settings = Settings(**self.storage.load_settings())

    @property
    def settings(self) -> Settings:
        """Current settings."""
        return self._settings

    @property
    def database_url(self) -> str:
        """Database URL, defaulting to a SQLite file in the config directory."""
        if self._settings.database_url:
            return self._settings.database_url
        return f"sqlite+aiosqlite:///{self.storage.database_file}"

    def update_settings(self, **changes: Any) -> Settings:
        """Validate and persist changed settings.

        Args:
            **changes: Setting names and their new values.

        Returns:
            The updated settings.

        Raises:
            pydantic.ValidationError: If a value is invalid.
        """
        merged = {**self._settings.model_dump(exclude_none=True), **changes}
        self._settings = Settings(**merged)
        self.storage.save_settings(self._settings.model_dump(exclude_none=True))
        return self._settings

    def resolve_user(self, user_id: str | None) -> str | None:
        """Return the explicit user id or the configured default."""
        return user_id or self._settings.default_user_id
