"""Aggregation of timesheet entries into one sync unit per project-day.

RM receives a single time entry per (project, day). Local entries for that
pair are summed, and a content hash over the values RM sees is used to
decide whether the remote copy is stale.
"""

import hashlib
import logging
from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field

from rm_sync.rm.models import BILLABLE_TASK, BUSINESS_DEVELOPMENT_TASK

logger = logging.getLogger(__name__)

UnitKey = tuple[str, date]


class RawEntry(BaseModel):
    """A local timesheet entry, as read from the timesheet store."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str | None
    day: date
    minutes: int = Field(ge=0)
    is_billable: bool = True
    notes: str | None = None
    is_skipped: bool = False


class SyncUnit(BaseModel):
    """All entries of one project on one day, as pushed to RM."""

    project_id: str
    day: date
    total_minutes: int = 0
    total_hours: float = 0.0
    is_billable: bool = True
    notes: str | None = None
    entries: list[RawEntry] = Field(default_factory=list)
    content_hash: str = ""

    @property
    def key(self) -> UnitKey:
        """Grouping key (project id, day)."""
        return (self.project_id, self.day)

    @property
    def entry_ids(self) -> list[str]:
        """Ids of the contributing entries."""
        return [e.id for e in self.entries]


def minutes_to_hours(minutes: int) -> float:
    """Convert minutes to decimal hours rounded half-up to 2 places.

    Args:
        minutes: Duration in minutes.

    Returns:
        Hours, e.g. 90 -> 1.5, 20 -> 0.33.
    """
    hours = (Decimal(minutes) / Decimal(60)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(hours)


def compute_hash(day: date, total_hours: float, is_billable: bool, notes: str | None) -> str:
    """SHA-256 over the fields RM stores for a unit.

    Args:
        day: Calendar day.
        total_hours: Hours, already rounded.
        is_billable: Billable flag.
        notes: Note text, if any.

    Returns:
        Hex digest.
    """
    content = f"{day.isoformat()}|{total_hours:.2f}|{str(is_billable).lower()}|{notes or ''}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def aggregate_entries(entries: Iterable[RawEntry]) -> dict[UnitKey, SyncUnit]:
    """Group entries into sync units keyed by (project id, day).

    Entries without a project or flagged as skipped are ignored. Entries are
    processed in id order so that the first note and the first billable
    value do not depend on input order.

    Args:
        entries: Raw timesheet entries.

    Returns:
        Sync units keyed by (project id, day).
    """
    units: dict[UnitKey, SyncUnit] = {}

    for entry in sorted(entries, key=lambda e: e.id):
        if not entry.project_id or entry.is_skipped:
            continue

        key = (entry.project_id, entry.day)
        unit = units.get(key)
        if unit is None:
            unit = SyncUnit(
                project_id=entry.project_id,
                day=entry.day,
                is_billable=entry.is_billable,
            )
            units[key] = unit

        unit.total_minutes += entry.minutes
        unit.entries.append(entry)

        if not unit.notes and entry.notes and entry.notes.strip():
            unit.notes = entry.notes.strip()

        if unit.is_billable != entry.is_billable:
            # Billable is a project property; disagreement means bad upstream data.
            logger.warning(
                f"Mixed billable status for project {entry.project_id} on {entry.day}; "
                f"keeping {unit.is_billable} from the first entry"
            )

    for unit in units.values():
        unit.total_hours = minutes_to_hours(unit.total_minutes)
        unit.content_hash = compute_hash(
            unit.day, unit.total_hours, unit.is_billable, unit.notes
        )

    return units


def encode_task(is_billable: bool) -> str:
    """Encode billable status into RM's free-text task field."""
    return BILLABLE_TASK if is_billable else BUSINESS_DEVELOPMENT_TASK


def decode_task(task: str | None) -> bool:
    """Decode RM's task field; anything but business development is billable."""
    if not task:
        return True
    return task.strip().lower() != BUSINESS_DEVELOPMENT_TASK.lower()
