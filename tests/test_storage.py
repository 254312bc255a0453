"""Tests for storage manager."""

import stat
from pathlib import Path

from rm_sync.utils import StorageManager


class TestStorageManager:
    """Test StorageManager functionality."""

    def test_init_creates_directory(self, temp_config_dir: Path) -> None:
        """Test that initialization creates the config directory."""
        config_dir = temp_config_dir / "nested" / "rm-sync"
        storage = StorageManager(config_dir)

        assert config_dir.is_dir()
        assert storage.settings_file == config_dir / "settings.yaml"
        assert storage.database_file == config_dir / "rm-sync.db"

    def test_settings_persistence(self, storage_manager: StorageManager) -> None:
        """Test saving and loading settings."""
        settings = {"write_delay": 0.25, "default_user_id": "user-1"}

        storage_manager.save_settings(settings)
        loaded = storage_manager.load_settings()

        assert loaded == settings

    def test_empty_settings_default(self, storage_manager: StorageManager) -> None:
        """Test that loading non-existent settings returns empty dict."""
        assert storage_manager.load_settings() == {}

    def test_get_set_token(self, storage_manager: StorageManager) -> None:
        """Test getting and setting a user's RM token."""
        storage_manager.set_token("my_api_token", "user-1")

        assert storage_manager.get_token("user-1") == "my_api_token"

    def test_tokens_are_per_user(self, storage_manager: StorageManager) -> None:
        """Test that storing one user's token keeps the others."""
        storage_manager.set_token("alice_token", "alice")
        storage_manager.set_token("bob_token", "bob")
        storage_manager.set_token("alice_token_2", "alice")

        assert storage_manager.get_token("alice") == "alice_token_2"
        assert storage_manager.get_token("bob") == "bob_token"

    def test_token_file_permissions(self, storage_manager: StorageManager) -> None:
        """Test that the token file is readable by the owner only."""
        storage_manager.set_token("my_api_token", "user-1")

        mode = stat.S_IMODE(storage_manager.tokens_file.stat().st_mode)
        assert mode == 0o600

    def test_get_nonexistent_token(self, storage_manager: StorageManager) -> None:
        """Test getting a token that doesn't exist."""
        assert storage_manager.get_token("nonexistent") is None

    def test_delete_token(self, storage_manager: StorageManager) -> None:
        """Test forgetting a token."""
        storage_manager.set_token("my_api_token", "user-1")
        storage_manager.set_token("other", "user-2")

        storage_manager.delete_token("user-1")
        storage_manager.delete_token("user-1")

        assert storage_manager.get_token("user-1") is None
        assert storage_manager.get_token("user-2") == "other"
