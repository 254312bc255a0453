"""Read-only access to the timesheet subsystem's tables."""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from rm_sync.db.models import Project, TimesheetEntry
from rm_sync.sync.aggregation import RawEntry


class TimesheetStore:
    """Source of raw entries and local projects."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def fetch_raw_entries(self, user_id: str, start_date: date, end_date: date) -> list[RawEntry]:
        """Syncable entries of a user in an inclusive date range.

        Entries without a project and entries marked as skipped are left out.

        Args:
            user_id: Local user id.
            start_date: First day.
            end_date: Last day.

        Returns:
            Raw entries ordered by day and id.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(TimesheetEntry)
                .where(
                    TimesheetEntry.user_id == user_id,
                    TimesheetEntry.entry_date >= start_date,
                    TimesheetEntry.entry_date <= end_date,
                    TimesheetEntry.project_id.is_not(None),
                    TimesheetEntry.is_skipped.is_(False),
                )
                .order_by(TimesheetEntry.entry_date, TimesheetEntry.id)
            )
            return [
                RawEntry(
                    id=row.id,
                    project_id=row.project_id,
                    day=row.entry_date,
                    minutes=row.duration,
                    is_billable=row.is_billable,
                    notes=row.notes,
                    is_skipped=row.is_skipped,
                )
                for row in result.scalars()
            ]

    async def list_projects(self, user_id: str) -> list[Project]:
        """Local projects of a user, by name."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Project).where(Project.user_id == user_id).order_by(Project.name)
            )
            return list(result.scalars())
