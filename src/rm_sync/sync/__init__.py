"""Aggregation, classification and retry logic of the RM push sync.

The engine lives in ``rm_sync.sync.engine`` and is imported from there.
"""

from rm_sync.sync.aggregation import RawEntry, SyncUnit, aggregate_entries, compute_hash
from rm_sync.sync.errors import (
    ConnectionMissingError,
    InvalidRunStateError,
    MappingConflictError,
    SyncError,
    SyncInProgressError,
)
from rm_sync.sync.matching import MatchSuggestion, find_best_match, suggest_matches
from rm_sync.sync.result import SyncPreview, SyncResult, SyncStatus, UnitAction
from rm_sync.sync.retry import RetryConfig, RetryExhaustedError, RetryPolicy

__all__ = [
    "ConnectionMissingError",
    "InvalidRunStateError",
    "MappingConflictError",
    "MatchSuggestion",
    "RawEntry",
    "RetryConfig",
    "RetryExhaustedError",
    "RetryPolicy",
    "SyncError",
    "SyncInProgressError",
    "SyncPreview",
    "SyncResult",
    "SyncStatus",
    "SyncUnit",
    "UnitAction",
    "aggregate_entries",
    "compute_hash",
    "find_best_match",
    "suggest_matches",
]
