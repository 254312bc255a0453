"""Access to RM connections, project mappings and synced units."""

import logging
from collections.abc import Iterable
from datetime import date

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from rm_sync.db.models import (
    RMConnection,
    RMProjectMapping,
    RMSyncedUnit,
    RMSyncedUnitComponent,
    RMSyncRun,
    utcnow,
)
from rm_sync.rm.models import RMUser
from rm_sync.sync.aggregation import SyncUnit
from rm_sync.sync.errors import MappingConflictError

logger = logging.getLogger(__name__)

SyncedKey = tuple[str, date]


def _components(synced_unit_id: str, unit: SyncUnit) -> list[RMSyncedUnitComponent]:
    return [
        RMSyncedUnitComponent(
            synced_unit_id=synced_unit_id,
            entry_id=entry.id,
            duration_minutes=entry.minutes,
            is_billable=entry.is_billable,
            notes=entry.notes,
        )
        for entry in unit.entries
    ]


class MappingStore:
    """Reads and writes the persisted side of the sync.

    Each method runs in its own short transaction.
    """

    def __init__(self, session_factory: async_sessionmaker) -> None:
        """Initialize the store.

        Args:
            session_factory: Async session factory bound to the database.
        """
        self.session_factory = session_factory

    # -- connections -----------------------------------------------------

    async def get_connection(self, user_id: str) -> RMConnection | None:
        """Connection for a user, or None."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMConnection).where(RMConnection.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def create_connection(self, user_id: str, rm_user: RMUser) -> RMConnection:
        """Create or refresh the connection for a user.

        Args:
            user_id: Local user id.
            rm_user: The RM user the token belongs to.

        Returns:
            The stored connection.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMConnection).where(RMConnection.user_id == user_id)
            )
            connection = result.scalar_one_or_none()
            if connection is None:
                connection = RMConnection(user_id=user_id)
                session.add(connection)
            connection.rm_user_id = rm_user.id
            connection.rm_user_email = rm_user.email
            connection.rm_user_name = rm_user.display_name
            await session.commit()
            logger.info(f"Stored RM connection for user {user_id} (RM user {rm_user.id})")
            return connection

    async def delete_connection(self, user_id: str) -> bool:
        """Delete a connection and everything hanging off it.

        Idempotent.

        Returns:
            True if a connection existed.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMConnection.id).where(RMConnection.user_id == user_id)
            )
            connection_id = result.scalar_one_or_none()
            if connection_id is None:
                return False

            mapping_ids = select(RMProjectMapping.id).where(
                RMProjectMapping.connection_id == connection_id
            )
            unit_ids = select(RMSyncedUnit.id).where(RMSyncedUnit.mapping_id.in_(mapping_ids))
            await session.execute(
                delete(RMSyncedUnitComponent).where(
                    RMSyncedUnitComponent.synced_unit_id.in_(unit_ids)
                )
            )
            await session.execute(
                delete(RMSyncedUnit).where(RMSyncedUnit.mapping_id.in_(mapping_ids))
            )
            await session.execute(
                delete(RMProjectMapping).where(RMProjectMapping.connection_id == connection_id)
            )
            await session.execute(delete(RMSyncRun).where(RMSyncRun.connection_id == connection_id))
            await session.execute(delete(RMConnection).where(RMConnection.id == connection_id))
            await session.commit()
            logger.info(f"Deleted RM connection for user {user_id}")
            return True

    # -- mappings --------------------------------------------------------

    async def list_mappings(
        self, connection_id: str, enabled_only: bool = False
    ) -> list[RMProjectMapping]:
        """Mappings of a connection, ordered by RM project name."""
        stmt = select(RMProjectMapping).where(RMProjectMapping.connection_id == connection_id)
        if enabled_only:
            stmt = stmt.where(RMProjectMapping.enabled.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(RMProjectMapping.rm_project_name))
            return list(result.scalars())

    async def get_enabled_mappings(self, connection_id: str) -> dict[str, RMProjectMapping]:
        """Enabled mappings keyed by local project id."""
        mappings = await self.list_mappings(connection_id, enabled_only=True)
        return {m.project_id: m for m in mappings}

    async def upsert_mapping(
        self,
        connection_id: str,
        project_id: str,
        rm_project_id: int,
        rm_project_name: str,
        rm_project_code: str | None = None,
    ) -> RMProjectMapping:
        """Map a local project to an RM project, re-enabling an existing row.

        Args:
            connection_id: Connection the mapping belongs to.
            project_id: Local project id.
            rm_project_id: RM project id.
            rm_project_name: RM project name, kept for display.
            rm_project_code: RM project code, if any.

        Returns:
            The stored mapping.

        Raises:
            MappingConflictError: If the RM project is mapped to another
                local project of the same connection.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMProjectMapping).where(
                    RMProjectMapping.connection_id == connection_id,
                    RMProjectMapping.project_id == project_id,
                )
            )
            mapping = result.scalar_one_or_none()
            if mapping is None:
                mapping = RMProjectMapping(connection_id=connection_id, project_id=project_id)
                session.add(mapping)
            mapping.rm_project_id = rm_project_id
            mapping.rm_project_name = rm_project_name
            mapping.rm_project_code = rm_project_code
            mapping.enabled = True
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise MappingConflictError(
                    f"RM project {rm_project_id} is already mapped to another project"
                ) from e
            return mapping

    async def set_mapping_enabled(self, mapping_id: str, enabled: bool) -> None:
        """Enable or disable a mapping."""
        async with self.session_factory() as session:
            await session.execute(
                update(RMProjectMapping)
                .where(RMProjectMapping.id == mapping_id)
                .values(enabled=enabled, updated_at=utcnow())
            )
            await session.commit()

    async def disable_mapping(self, mapping_id: str) -> None:
        """Disable a mapping whose RM project no longer exists."""
        await self.set_mapping_enabled(mapping_id, False)

    async def delete_mapping(self, connection_id: str, project_id: str) -> bool:
        """Delete the mapping of a local project.

        Returns:
            True if a mapping was deleted.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMProjectMapping.id).where(
                    RMProjectMapping.connection_id == connection_id,
                    RMProjectMapping.project_id == project_id,
                )
            )
            mapping_id = result.scalar_one_or_none()
            if mapping_id is None:
                return False
            unit_ids = select(RMSyncedUnit.id).where(RMSyncedUnit.mapping_id == mapping_id)
            await session.execute(
                delete(RMSyncedUnitComponent).where(
                    RMSyncedUnitComponent.synced_unit_id.in_(unit_ids)
                )
            )
            await session.execute(delete(RMSyncedUnit).where(RMSyncedUnit.mapping_id == mapping_id))
            await session.execute(delete(RMProjectMapping).where(RMProjectMapping.id == mapping_id))
            await session.commit()
            return True

    async def touch_mapping(self, mapping_id: str) -> None:
        """Stamp the mapping's last successful sync."""
        async with self.session_factory() as session:
            await session.execute(
                update(RMProjectMapping)
                .where(RMProjectMapping.id == mapping_id)
                .values(last_synced_at=utcnow())
            )
            await session.commit()

    # -- synced units ----------------------------------------------------

    async def get_synced_units(
        self,
        mapping_ids: Iterable[str],
        start_date: date,
        end_date: date,
    ) -> dict[SyncedKey, RMSyncedUnit]:
        """Synced units of the given mappings within a date range.

        Returns:
            Units keyed by (mapping id, day).
        """
        mapping_ids = list(mapping_ids)
        if not mapping_ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMSyncedUnit).where(
                    RMSyncedUnit.mapping_id.in_(mapping_ids),
                    RMSyncedUnit.day >= start_date,
                    RMSyncedUnit.day <= end_date,
                )
            )
            return {(u.mapping_id, u.day): u for u in result.scalars()}

    async def get_synced_unit(self, mapping_id: str, day: date) -> RMSyncedUnit | None:
        """Synced unit for one (mapping, day), or None."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMSyncedUnit).where(
                    RMSyncedUnit.mapping_id == mapping_id, RMSyncedUnit.day == day
                )
            )
            return result.scalar_one_or_none()

    async def get_components(self, synced_unit_id: str) -> list[RMSyncedUnitComponent]:
        """Audit components of a synced unit, ordered by entry id."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RMSyncedUnitComponent)
                .where(RMSyncedUnitComponent.synced_unit_id == synced_unit_id)
                .order_by(RMSyncedUnitComponent.entry_id)
            )
            return list(result.scalars())

    async def create_synced_unit(
        self, mapping_id: str, unit: SyncUnit, rm_entry_id: int
    ) -> RMSyncedUnit:
        """Record the first successful write of a unit.

        Args:
            mapping_id: Mapping the unit was written through.
            unit: The unit as written.
            rm_entry_id: Id RM assigned to the entry.

        Returns:
            The new record, at sync version 1.
        """
        async with self.session_factory() as session:
            synced = RMSyncedUnit(
                mapping_id=mapping_id,
                day=unit.day,
                rm_entry_id=rm_entry_id,
                last_synced_hash=unit.content_hash,
                last_synced_at=utcnow(),
                sync_version=1,
            )
            session.add(synced)
            await session.flush()
            session.add_all(_components(synced.id, unit))
            await session.commit()
            return synced

    async def update_synced_unit(
        self, synced_unit_id: str, unit: SyncUnit, rm_entry_id: int
    ) -> RMSyncedUnit:
        """Record a successful update, bumping the sync version.

        Components are replaced with the unit's current entries.

        Returns:
            The updated record.
        """
        async with self.session_factory() as session:
            synced = await session.get(RMSyncedUnit, synced_unit_id)
            if synced is None:
                raise LookupError(f"Synced unit {synced_unit_id} does not exist")
            synced.rm_entry_id = rm_entry_id
            synced.last_synced_hash = unit.content_hash
            synced.last_synced_at = utcnow()
            synced.sync_version += 1
            await session.execute(
                delete(RMSyncedUnitComponent).where(
                    RMSyncedUnitComponent.synced_unit_id == synced_unit_id
                )
            )
            session.add_all(_components(synced_unit_id, unit))
            await session.commit()
            return synced

    async def delete_synced_unit(self, synced_unit_id: str) -> None:
        """Forget a synced unit whose RM entry has disappeared."""
        async with self.session_factory() as session:
            await session.execute(
                delete(RMSyncedUnitComponent).where(
                    RMSyncedUnitComponent.synced_unit_id == synced_unit_id
                )
            )
            await session.execute(delete(RMSyncedUnit).where(RMSyncedUnit.id == synced_unit_id))
            await session.commit()
