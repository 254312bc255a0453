"""Persisted lifecycle of sync runs.

Only one run per connection may be RUNNING. This is enforced by a partial
unique index rather than a lock: start_run inserts unconditionally and a
constraint violation means another run holds the slot. That works across
processes as long as they share the database.
"""

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from rm_sync.db.models import RMConnection, RMSyncRun, utcnow
from rm_sync.sync.errors import InvalidRunStateError, SyncInProgressError
from rm_sync.sync.result import TERMINAL_STATUSES, RunCounters, SyncDirection, SyncStatus

logger = logging.getLogger(__name__)


class SyncLog:
    """Creates, finalizes and queries sync run records."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        """Initialize the sync log.

        Args:
            session_factory: Async session factory bound to the database.
        """
        self.session_factory = session_factory

    async def start_run(
        self,
        connection_id: str,
        direction: SyncDirection = SyncDirection.PUSH,
    ) -> RMSyncRun:
        """Claim the RUNNING slot of a connection.

        Args:
            connection_id: Connection to sync.
            direction: Sync direction.

        Returns:
            The new RUNNING run.

        Raises:
            SyncInProgressError: If a run is already RUNNING for the connection.
        """
        async with self.session_factory() as session:
            run = RMSyncRun(
                connection_id=connection_id,
                status=SyncStatus.RUNNING,
                direction=direction,
                started_at=utcnow(),
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise SyncInProgressError(
                    "A sync operation is already in progress for this connection. "
                    "Please wait for it to complete."
                ) from e

        logger.info(f"Started sync {run.id} for connection {connection_id}")
        return run

    async def complete_run(
        self,
        run_id: str,
        status: SyncStatus,
        counters: RunCounters,
        error_message: str | None = None,
        error_details: dict[str, Any] | None = None,
    ) -> RMSyncRun:
        """Move a RUNNING run to a terminal status.

        Also stamps the connection's last sync time.

        Args:
            run_id: Run to finalize.
            status: COMPLETED, PARTIAL or FAILED.
            counters: Final counters.
            error_message: Short summary, if anything went wrong.
            error_details: Structured detail, if any.

        Returns:
            The finalized run.

        Raises:
            InvalidRunStateError: If `status` is not terminal, or the run
                does not exist or is no longer RUNNING.
        """
        if status not in TERMINAL_STATUSES:
            raise InvalidRunStateError(
                f"Invalid completion status: {status.value}. Must be COMPLETED, FAILED, or PARTIAL"
            )

        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                update(RMSyncRun)
                .where(RMSyncRun.id == run_id, RMSyncRun.status == SyncStatus.RUNNING)
                .values(
                    status=status,
                    entries_attempted=counters.attempted,
                    entries_success=counters.succeeded,
                    entries_failed=counters.failed,
                    entries_skipped=counters.skipped,
                    error_message=error_message,
                    error_details=error_details,
                    completed_at=now,
                )
            )
            if result.rowcount != 1:
                await session.rollback()
                raise InvalidRunStateError(f"Sync run {run_id} is not RUNNING")

            run = await session.get(RMSyncRun, run_id)
            await session.execute(
                update(RMConnection)
                .where(RMConnection.id == run.connection_id)
                .values(last_sync_at=now)
            )
            await session.commit()
            await session.refresh(run)

        logger.info(
            f"Completed sync {run_id} with status {status.value}: "
            f"{counters.succeeded}/{counters.attempted} succeeded, "
            f"{counters.failed} failed, {counters.skipped} skipped"
        )
        return run

    async def get_run(self, run_id: str) -> RMSyncRun | None:
        """Run by id, or None."""
        async with self.session_factory() as session:
            return await session.get(RMSyncRun, run_id)

    async def get_running_run(self, connection_id: str) -> RMSyncRun | None:
        """The RUNNING run of a connection, if any."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMSyncRun)
                .where(
                    RMSyncRun.connection_id == connection_id,
                    RMSyncRun.status == SyncStatus.RUNNING,
                )
                .order_by(RMSyncRun.started_at.desc())
            )
            return result.scalars().first()

    async def get_history(self, connection_id: str, limit: int = 10) -> list[RMSyncRun]:
        """Most recent runs of a connection, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMSyncRun)
                .where(RMSyncRun.connection_id == connection_id)
                .order_by(RMSyncRun.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars())

    async def cancel_stuck_runs(self, connection_id: str, reason: str) -> int:
        """Fail every RUNNING run of a connection.

        Meant for operators after a crashed process left a run behind.

        Returns:
            Number of runs cancelled.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(RMSyncRun)
                .where(
                    RMSyncRun.connection_id == connection_id,
                    RMSyncRun.status == SyncStatus.RUNNING,
                )
                .values(
                    status=SyncStatus.FAILED,
                    error_message=f"Sync cancelled: {reason}",
                    completed_at=utcnow(),
                )
            )
            await session.commit()
            cancelled = result.rowcount or 0

        if cancelled:
            logger.warning(f"Cancelled {cancelled} stuck sync(s) for connection {connection_id}")
        return cancelled
