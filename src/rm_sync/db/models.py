"""SQLAlchemy models for timesheet data and RM sync state."""

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rm_sync.sync.result import SyncDirection, SyncStatus


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# Owned by the timesheet subsystem; the sync engine only reads these.


class Project(Base):
    """Local project that time is tracked against."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


class TimesheetEntry(Base):
    """One tracked block of time."""

    __tablename__ = "timesheet_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    entry_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minutes
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# RM sync state.


class RMConnection(Base):
    """A user's link to their RM account."""

    __tablename__ = "rm_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    rm_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rm_user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    rm_user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<RMConnection(user_id={self.user_id}, rm_user_id={self.rm_user_id})>"


class RMProjectMapping(Base):
    """Local project <-> RM project, one-to-one per connection."""

    __tablename__ = "rm_project_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rm_connections.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    rm_project_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rm_project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    rm_project_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("connection_id", "project_id", name="uq_rm_mapping_project"),
        UniqueConstraint("connection_id", "rm_project_id", name="uq_rm_mapping_rm_project"),
    )

    def __repr__(self) -> str:
        return (
            f"<RMProjectMapping(project_id={self.project_id}, "
            f"rm_project_id={self.rm_project_id}, enabled={self.enabled})>"
        )


class RMSyncedUnit(Base):
    """What was last pushed to RM for one (mapping, day)."""

    __tablename__ = "rm_synced_units"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    mapping_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rm_project_mappings.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # RM ids do not fit in a 32-bit signed integer.
    rm_entry_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_synced_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    sync_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (UniqueConstraint("mapping_id", "day", name="uq_rm_synced_unit_day"),)


class RMSyncedUnitComponent(Base):
    """Audit snapshot of one entry that contributed to a synced unit."""

    __tablename__ = "rm_synced_unit_components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    synced_unit_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rm_synced_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("synced_unit_id", "entry_id", name="uq_rm_component_entry"),
    )


class RMSyncRun(Base):
    """Persisted state machine of one sync run."""

    __tablename__ = "rm_sync_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rm_connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, native_enum=False, length=16), nullable=False
    )
    direction: Mapped[SyncDirection] = mapped_column(
        Enum(SyncDirection, native_enum=False, length=16),
        nullable=False,
        default=SyncDirection.PUSH,
    )
    entries_attempted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entries_success: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entries_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entries_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        # At most one RUNNING run per connection; the loser of an insert race
        # gets an IntegrityError.
        Index(
            "uq_rm_sync_run_running",
            "connection_id",
            unique=True,
            sqlite_where=text("status = 'RUNNING'"),
            postgresql_where=text("status = 'RUNNING'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<RMSyncRun(id={self.id}, status={self.status}, connection={self.connection_id})>"
