"""Errors raised by the sync engine and its persistence layer."""


class SyncError(Exception):
    """Base class for sync engine errors."""


class ConnectionMissingError(SyncError):
    """The user has no RM connection or no usable credentials."""


class SyncInProgressError(SyncError):
    """Another run already holds the RUNNING slot for the connection."""


class InvalidRunStateError(SyncError):
    """A run was asked to move to a state it cannot enter."""


class MappingConflictError(SyncError):
    """The RM project is already mapped to another local project."""
