"""Run states, counters and the results handed back to callers."""

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Lifecycle of a sync run. PENDING is never produced by the engine."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({SyncStatus.COMPLETED, SyncStatus.PARTIAL, SyncStatus.FAILED})


class SyncDirection(str, Enum):
    """Direction of a run. Hours only flow from the timesheet to RM."""

    PUSH = "PUSH"


class UnitAction(str, Enum):
    """What a run does with a sync unit."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


SKIP_ZERO_HOURS = "zero hours"
SKIP_UNMAPPED = "unmapped"
SKIP_UNCHANGED = "unchanged"


@dataclass
class RunCounters:
    """Per-run statistics persisted on the run record."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


def derive_status(counters: RunCounters) -> SyncStatus:
    """Terminal status for a run that reached the end of its units.

    Args:
        counters: Final counters.

    Returns:
        COMPLETED when nothing failed, PARTIAL when some units failed and
        some succeeded, FAILED when every attempted unit failed.
    """
    if counters.failed == 0:
        return SyncStatus.COMPLETED
    if counters.succeeded > 0:
        return SyncStatus.PARTIAL
    return SyncStatus.FAILED


@dataclass
class UnitFailure:
    """A unit that could not be written."""

    entry_ids: list[str]
    project_id: str
    day: date
    message: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        return data


@dataclass
class UnitPlan:
    """Classification of one unit."""

    project_id: str
    day: date
    total_hours: float
    action: UnitAction
    reason: str | None = None
    entry_ids: list[str] = field(default_factory=list)
    rm_project_id: int | None = None


class SyncResult:
    """Outcome of one sync run."""

    def __init__(self, run_id: str | None = None) -> None:
        """Initialize sync result.

        Args:
            run_id: Id of the persisted run record.
        """
        self.run_id = run_id
        self.status: SyncStatus = SyncStatus.RUNNING
        self.counters = RunCounters()
        self.created = 0
        self.updated = 0
        self.recreated = 0
        self.unmapped_projects: list[str] = []
        self.failures: list[UnitFailure] = []
        self.plans: list[UnitPlan] = []

    @property
    def attempted(self) -> int:
        return self.counters.attempted

    @property
    def succeeded(self) -> int:
        return self.counters.succeeded

    @property
    def failed(self) -> int:
        return self.counters.failed

    @property
    def skipped(self) -> int:
        return self.counters.skipped

    @property
    def nothing_to_do(self) -> bool:
        """True when every unit was skipped."""
        return self.counters.attempted == 0

    def add_skip(self) -> None:
        """Record a skipped unit."""
        self.counters.skipped += 1

    def add_attempt(self) -> None:
        """Record a unit that needed a remote write."""
        self.counters.attempted += 1

    def add_success(self, action: UnitAction, recreated: bool = False) -> None:
        """Record a successful write."""
        self.counters.succeeded += 1
        if action is UnitAction.UPDATE:
            self.updated += 1
        else:
            self.created += 1
        if recreated:
            self.recreated += 1

    def add_failure(self, failure: UnitFailure) -> None:
        """Record a failed write."""
        self.counters.failed += 1
        self.failures.append(failure)

    def add_unmapped(self, project_id: str) -> None:
        """Record an unmapped project, once per project."""
        if project_id not in self.unmapped_projects:
            self.unmapped_projects.append(project_id)

    def error_message(self) -> str | None:
        """Summary stored on the run record, None when nothing failed."""
        if not self.failures:
            return None
        return f"{self.counters.failed} of {self.counters.attempted} units failed to sync"

    def error_details(self) -> dict[str, Any] | None:
        """Structured detail stored on the run record."""
        if not self.failures and not self.unmapped_projects:
            return None
        return {
            "failures": [f.to_dict() for f in self.failures],
            "unmapped_projects": list(self.unmapped_projects),
        }

    def __str__(self) -> str:
        """String representation of results."""
        return (
            f"Status: {self.status.value}, "
            f"Attempted: {self.counters.attempted}, "
            f"Succeeded: {self.counters.succeeded}, "
            f"Failed: {self.counters.failed}, "
            f"Skipped: {self.counters.skipped}, "
            f"Unmapped: {len(self.unmapped_projects)}"
        )


class SyncPreview:
    """Classification of every unit without any writes."""

    def __init__(self) -> None:
        self.plans: list[UnitPlan] = []
        self.unmapped_projects: list[str] = []

    def add_plan(self, plan: UnitPlan) -> None:
        self.plans.append(plan)
        if plan.reason == SKIP_UNMAPPED and plan.project_id not in self.unmapped_projects:
            self.unmapped_projects.append(plan.project_id)

    def count(self, action: UnitAction) -> int:
        """Number of units classified with `action`."""
        return sum(1 for p in self.plans if p.action is action)
