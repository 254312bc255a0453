"""Sync engine pushing aggregated timesheet hours to Resource Management."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date

from rm_sync.config import Settings
from rm_sync.db.models import RMConnection, RMProjectMapping, RMSyncedUnit
from rm_sync.db.store import MappingStore, SyncedKey
from rm_sync.db.sync_log import SyncLog
from rm_sync.db.timesheet import TimesheetStore
from rm_sync.rm.client import RMClient
from rm_sync.rm.errors import RMApiError, RMNotFoundError
from rm_sync.rm.models import RMTimeEntryInput
from rm_sync.sync.aggregation import SyncUnit, UnitKey, aggregate_entries, encode_task
from rm_sync.sync.errors import ConnectionMissingError
from rm_sync.sync.retry import RetryConfig, RetryExhaustedError, RetryPolicy, Sleep
from rm_sync.sync.result import (
    SKIP_UNCHANGED,
    SKIP_UNMAPPED,
    SKIP_ZERO_HOURS,
    SyncPreview,
    SyncResult,
    SyncStatus,
    UnitAction,
    UnitFailure,
    UnitPlan,
    derive_status,
)

logger = logging.getLogger(__name__)

PROJECT_GONE = "RM project no longer exists; mapping disabled"


@dataclass
class _Classified:
    plan: UnitPlan
    mapping: RMProjectMapping | None = None
    synced: RMSyncedUnit | None = None


@dataclass
class _RunContext:
    connection: RMConnection
    result: SyncResult
    dead_mappings: set[str] = field(default_factory=set)
    writes_issued: int = 0


def classify_unit(
    unit: SyncUnit,
    mappings: dict[str, RMProjectMapping],
    synced_units: dict[SyncedKey, RMSyncedUnit],
    force_sync: bool = False,
) -> _Classified:
    """Decide whether a unit is created, updated or skipped.

    Rules are applied in order: zero hours, unmapped project, unchanged
    hash (unless forced), existing record -> update, otherwise create.

    Args:
        unit: The unit to classify.
        mappings: Enabled mappings keyed by local project id.
        synced_units: Synced records keyed by (mapping id, day).
        force_sync: Update even when the hash is unchanged.

    Returns:
        The plan plus the mapping and synced record it refers to.
    """
    plan = UnitPlan(
        project_id=unit.project_id,
        day=unit.day,
        total_hours=unit.total_hours,
        action=UnitAction.SKIP,
        entry_ids=unit.entry_ids,
    )

    if unit.total_hours == 0:
        plan.reason = SKIP_ZERO_HOURS
        return _Classified(plan)

    mapping = mappings.get(unit.project_id)
    if mapping is None:
        plan.reason = SKIP_UNMAPPED
        return _Classified(plan)
    plan.rm_project_id = mapping.rm_project_id

    synced = synced_units.get((mapping.id, unit.day))
    if synced is not None and not force_sync and synced.last_synced_hash == unit.content_hash:
        plan.reason = SKIP_UNCHANGED
        return _Classified(plan, mapping, synced)

    plan.action = UnitAction.UPDATE if synced is not None else UnitAction.CREATE
    return _Classified(plan, mapping, synced)


class SyncEngine:
    """Runs one reconciliation of a user's hours against RM.

    Units are processed one at a time. Per-unit failures are collected and
    never stop the run; anything else aborts it. Either way the run record
    ends in a terminal status before sync() returns or raises.
    """

    def __init__(
        self,
        store: MappingStore,
        sync_log: SyncLog,
        timesheet: TimesheetStore,
        client: RMClient,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize sync engine.

        Args:
            store: Connections, mappings and synced units.
            sync_log: Run records.
            timesheet: Source of raw entries.
            client: RM API client holding the user's token.
            settings: Timing settings. Defaults apply when omitted.
            retry_policy: Policy for remote writes. Built from settings when omitted.
            sleep: Coroutine used for the pause between writes.
        """
        self.store = store
        self.sync_log = sync_log
        self.timesheet = timesheet
        self.client = client
        self.settings = settings or Settings()
        self.retry = retry_policy or RetryPolicy(
            RetryConfig(
                max_attempts=self.settings.max_attempts,
                rate_limit_base_delay=self.settings.rate_limit_base_delay,
                retry_delay=self.settings.retry_delay,
            ),
            sleep=sleep,
        )
        self._sleep = sleep

    async def _require_connection(self, user_id: str) -> RMConnection:
        connection = await self.store.get_connection(user_id)
        if connection is None:
            raise ConnectionMissingError(
                "No RM connection found - please connect your RM account first"
            )
        return connection

    async def _load(
        self,
        connection: RMConnection,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> tuple[
        dict[UnitKey, SyncUnit],
        dict[str, RMProjectMapping],
        dict[SyncedKey, RMSyncedUnit],
    ]:
        entries = await self.timesheet.fetch_raw_entries(user_id, start_date, end_date)
        units = aggregate_entries(entries)
        mappings = await self.store.get_enabled_mappings(connection.id)
        synced = await self.store.get_synced_units(
            [m.id for m in mappings.values()], start_date, end_date
        )
        logger.info(
            f"Aggregated {len(entries)} entries into {len(units)} project-day units "
            f"({len(mappings)} mapped projects)"
        )
        return units, mappings, synced

    async def preview(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        force_sync: bool = False,
    ) -> SyncPreview:
        """Classify every unit without writing anything.

        Args:
            user_id: Local user id.
            start_date: First day (inclusive).
            end_date: Last day (inclusive).
            force_sync: Classify unchanged units as updates.

        Returns:
            Per-unit action and reason.

        Raises:
            ConnectionMissingError: If the user has no RM connection.
        """
        _check_range(start_date, end_date)
        connection = await self._require_connection(user_id)
        units, mappings, synced = await self._load(connection, user_id, start_date, end_date)

        preview = SyncPreview()
        for key in sorted(units):
            preview.add_plan(classify_unit(units[key], mappings, synced, force_sync).plan)
        return preview

    async def sync(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        force_sync: bool = False,
    ) -> SyncResult:
        """Push a user's hours for a date range to RM.

        Args:
            user_id: Local user id.
            start_date: First day (inclusive).
            end_date: Last day (inclusive).
            force_sync: Rewrite units even when their hash is unchanged.

        Returns:
            Counters, unmapped projects and per-unit failures.

        Raises:
            ConnectionMissingError: If the user has no connection or no token.
            SyncInProgressError: If another run is active for the connection.
            TimeoutError: If the run exceeds the configured wall-clock limit.
        """
        _check_range(start_date, end_date)
        connection = await self._require_connection(user_id)
        run = await self.sync_log.start_run(connection.id)
        result = SyncResult(run.id)
        context = _RunContext(connection=connection, result=result)

        logger.info(
            f"Syncing {start_date} to {end_date} for user {user_id} "
            f"(run {run.id}{', forced' if force_sync else ''})"
        )

        try:
            await asyncio.wait_for(
                self._execute(context, user_id, start_date, end_date, force_sync),
                timeout=self.settings.run_timeout,
            )
            result.status = derive_status(result.counters)
            await self.sync_log.complete_run(
                run.id,
                result.status,
                result.counters,
                result.error_message(),
                result.error_details(),
            )
        except (Exception, asyncio.CancelledError) as e:
            await self._abort(run.id, result, e)
            raise

        logger.info(f"Sync complete: {result}")
        return result

    async def _abort(self, run_id: str, result: SyncResult, error: BaseException) -> None:
        """Finalize a run as FAILED after an unhandled error."""
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            message = f"Sync timed out after {self.settings.run_timeout:g}s"
        elif isinstance(error, asyncio.CancelledError):
            message = "Sync cancelled before completion"
        else:
            message = str(error) or error.__class__.__name__

        logger.error(f"Sync {run_id} aborted: {message}", exc_info=error)
        result.status = SyncStatus.FAILED
        details = result.error_details() or {}
        details["abort"] = {"type": error.__class__.__name__, "message": message}
        try:
            await self.sync_log.complete_run(
                run_id, SyncStatus.FAILED, result.counters, message, details
            )
        except Exception:
            # The original error is re-raised by the caller.
            logger.exception(f"Could not mark sync {run_id} as FAILED")

    async def _execute(
        self,
        context: _RunContext,
        user_id: str,
        start_date: date,
        end_date: date,
        force_sync: bool,
    ) -> None:
        if not self.client.token:
            raise ConnectionMissingError("No RM API token configured for this connection")

        units, mappings, synced = await self._load(
            context.connection, user_id, start_date, end_date
        )
        result = context.result

        for key in sorted(units):
            unit = units[key]
            classified = classify_unit(unit, mappings, synced, force_sync)
            plan = classified.plan
            result.plans.append(plan)

            if plan.action is UnitAction.SKIP:
                result.add_skip()
                if plan.reason == SKIP_UNMAPPED:
                    result.add_unmapped(unit.project_id)
                logger.debug(f"Skipping {_describe(unit)}: {plan.reason}")
                continue

            result.add_attempt()
            mapping = classified.mapping
            if mapping.id in context.dead_mappings:
                result.add_failure(_failure(unit, PROJECT_GONE))
                continue

            await self._write_unit(context, unit, plan.action, mapping, classified.synced)

    async def _pace(self, context: _RunContext) -> None:
        """Pause between successive remote writes of a run."""
        if context.writes_issued and self.settings.write_delay:
            await self._sleep(self.settings.write_delay)
        context.writes_issued += 1

    async def _write_unit(
        self,
        context: _RunContext,
        unit: SyncUnit,
        action: UnitAction,
        mapping: RMProjectMapping,
        synced: RMSyncedUnit | None,
    ) -> None:
        """Create or update one unit in RM and record the outcome."""
        result = context.result
        rm_user_id = context.connection.rm_user_id
        payload = RMTimeEntryInput(
            assignable_id=mapping.rm_project_id,
            date=unit.day,
            hours=unit.total_hours,
            task=encode_task(unit.is_billable),
            notes=unit.notes,
        )
        recreated = False

        try:
            if action is UnitAction.UPDATE:
                await self._pace(context)
                try:
                    remote = await self.retry.run(
                        lambda: self.client.update_time_entry(
                            rm_user_id, synced.rm_entry_id, payload
                        ),
                        description=f"Update of {_describe(unit)}",
                    )
                except RMNotFoundError:
                    logger.warning(
                        f"RM entry {synced.rm_entry_id} for {_describe(unit)} was deleted "
                        f"remotely, recreating it"
                    )
                    await self.store.delete_synced_unit(synced.id)
                    recreated = True
                else:
                    await self.store.update_synced_unit(synced.id, unit, remote.id)
                    logger.info(
                        f"Updated RM entry {remote.id}: {_describe(unit)} -> {unit.total_hours}h"
                    )

            if action is UnitAction.CREATE or recreated:
                await self._pace(context)
                try:
                    remote = await self.retry.run(
                        lambda: self.client.create_time_entry(rm_user_id, payload),
                        description=f"Create of {_describe(unit)}",
                    )
                except RMNotFoundError:
                    logger.warning(
                        f"RM project {mapping.rm_project_id} no longer exists, "
                        f"disabling mapping for project {mapping.project_id}"
                    )
                    await self.store.disable_mapping(mapping.id)
                    context.dead_mappings.add(mapping.id)
                    result.add_failure(_failure(unit, PROJECT_GONE))
                    return
                await self.store.create_synced_unit(mapping.id, unit, remote.id)
                logger.info(
                    f"Created RM entry {remote.id}: {_describe(unit)} -> {unit.total_hours}h"
                )
        except (RMApiError, RetryExhaustedError) as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(f"Failed to sync {_describe(unit)}: {message}")
            result.add_failure(_failure(unit, message))
            return

        await self.store.touch_mapping(mapping.id)
        result.add_success(UnitAction.CREATE if recreated else action, recreated=recreated)


def _check_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError(f"Start date {start_date} is after end date {end_date}")


def _describe(unit: SyncUnit) -> str:
    return f"project {unit.project_id} on {unit.day.isoformat()}"


def _failure(unit: SyncUnit, message: str) -> UnitFailure:
    return UnitFailure(
        entry_ids=unit.entry_ids,
        project_id=unit.project_id,
        day=unit.day,
        message=message,
    )
