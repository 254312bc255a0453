"""Resource Management API integration."""

from rm_sync.rm.client import RMClient
from rm_sync.rm.errors import (
    RMApiError,
    RMAuthError,
    RMNetworkError,
    RMNotFoundError,
    RMRateLimitError,
    RMValidationError,
)
from rm_sync.rm.models import RMProject, RMTimeEntry, RMTimeEntryInput, RMUser

__all__ = [
    "RMClient",
    "RMApiError",
    "RMAuthError",
    "RMNetworkError",
    "RMNotFoundError",
    "RMRateLimitError",
    "RMValidationError",
    "RMProject",
    "RMTimeEntry",
    "RMTimeEntryInput",
    "RMUser",
]
