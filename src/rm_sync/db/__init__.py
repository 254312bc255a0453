"""Persistence for timesheet data and RM sync state."""

from rm_sync.db.models import (
    Base,
    Project,
    RMConnection,
    RMProjectMapping,
    RMSyncedUnit,
    RMSyncedUnitComponent,
    RMSyncRun,
    TimesheetEntry,
)
from rm_sync.db.session import create_engine, create_session_factory, init_db
from rm_sync.db.store import MappingStore
from rm_sync.db.sync_log import SyncLog
from rm_sync.db.timesheet import TimesheetStore

__all__ = [
    "Base",
    "Project",
    "RMConnection",
    "RMProjectMapping",
    "RMSyncedUnit",
    "RMSyncedUnitComponent",
    "RMSyncRun",
    "TimesheetEntry",
    "create_engine",
    "create_session_factory",
    "init_db",
    "MappingStore",
    "SyncLog",
    "TimesheetStore",
]
