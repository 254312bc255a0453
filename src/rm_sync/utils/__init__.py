"""Utility modules for the RM synchronizer."""

from rm_sync.utils.logging import get_logger, setup_logging
from rm_sync.utils.storage import StorageManager

__all__ = ["get_logger", "setup_logging", "StorageManager"]
