"""Config directory, settings and token storage for the RM synchronizer."""

import json
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_DIR = Path.home() / ".rm-sync"


class StorageManager:
    """Manages the settings file, the token file and the database location."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store configuration. Defaults to ~/.rm-sync/
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.settings_file = self.config_dir / "settings.yaml"
        self.tokens_file = self.config_dir / "tokens.json"
        self.database_file = self.config_dir / "rm-sync.db"

    def load_settings(self) -> dict[str, Any]:
        """Load raw settings from YAML.

        Returns:
            Settings dictionary, empty if the file does not exist.
        """
        if not self.settings_file.exists():
            return {}
        with open(self.settings_file) as f:
            return yaml.safe_load(f) or {}

    def save_settings(self, settings: dict[str, Any]) -> None:
        """Persist raw settings as YAML.

        Args:
            settings: Settings dictionary to save.
        """
        with open(self.settings_file, "w") as f:
            yaml.safe_dump(settings, f, default_flow_style=False, sort_keys=True)

    def _load_tokens(self) -> dict[str, str]:
        if self.tokens_file.exists():
            with open(self.tokens_file) as f:
                return json.load(f)
        return {}

    def _save_tokens(self, tokens: dict[str, str]) -> None:
        with open(self.tokens_file, "w") as f:
            json.dump(tokens, f)
        # user read/write only
        self.tokens_file.chmod(0o600)

    def get_token(self, user_id: str) -> str | None:
        """Get the stored RM API token of a local user.

        Args:
            user_id: Local user id the token belongs to.

        Returns:
            Token if available, None otherwise.
        """
        return self._load_tokens().get(user_id)

    def set_token(self, token: str, user_id: str) -> None:
        """Store the RM API token of a local user.

        Args:
            token: Plain API token.
            user_id: Local user id the token belongs to.
        """
        tokens = self._load_tokens()
        tokens[user_id] = token
        self._save_tokens(tokens)

    def delete_token(self, user_id: str) -> None:
        """Forget the RM API token of a local user. No-op if absent."""
        tokens = self._load_tokens()
        if tokens.pop(user_id, None) is not None:
            self._save_tokens(tokens)
