"""Pytest configuration and fixtures."""

import itertools
import tempfile
from collections.abc import Awaitable, Callable
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from rm_sync.config import Config, Settings
from rm_sync.db import (
    MappingStore,
    Project,
    RMConnection,
    SyncLog,
    TimesheetEntry,
    TimesheetStore,
    create_engine,
    create_session_factory,
    init_db,
)
from rm_sync.rm import RMClient, RMProject, RMTimeEntry, RMTimeEntryInput, RMUser
from rm_sync.utils import StorageManager

USER_ID = "user-1"
# Larger than a signed 32-bit integer.
RM_USER_ID = 3_000_000_001


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def config(temp_config_dir: Path) -> Config:
    """Create a config instance with temporary directory."""
    return Config(temp_config_dir)


@pytest.fixture
def fast_settings() -> Settings:
    """Engine settings; tests replace sleeping with fake_sleep."""
    return Settings(write_delay=0.1, rate_limit_base_delay=2.0, retry_delay=2.0, run_timeout=30)


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncEngine:
    """File-backed SQLite database with the full schema."""
    engine = create_engine(f"sqlite:///{tmp_path / 'rm-sync-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the test database."""
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory: async_sessionmaker) -> MappingStore:
    return MappingStore(session_factory)


@pytest.fixture
def sync_log(session_factory: async_sessionmaker) -> SyncLog:
    return SyncLog(session_factory)


@pytest.fixture
def timesheet(session_factory: async_sessionmaker) -> TimesheetStore:
    return TimesheetStore(session_factory)


@pytest.fixture
def rm_user() -> RMUser:
    """The RM user behind the test token."""
    return RMUser(id=RM_USER_ID, email="jane.doe@example.com", first_name="Jane", last_name="Doe")


@pytest_asyncio.fixture
async def connection(store: MappingStore, rm_user: RMUser) -> RMConnection:
    """Stored RM connection for the test user."""
    return await store.create_connection(USER_ID, rm_user)


@pytest.fixture
def add_project(session_factory: async_sessionmaker) -> Callable[..., Awaitable[Project]]:
    """Insert a local project."""

    async def _add(project_id: str, name: str, user_id: str = USER_ID) -> Project:
        async with session_factory() as session:
            project = Project(id=project_id, user_id=user_id, name=name)
            session.add(project)
            await session.commit()
            return project

    return _add


@pytest.fixture
def add_entry(session_factory: async_sessionmaker) -> Callable[..., Awaitable[TimesheetEntry]]:
    """Insert a timesheet entry."""

    async def _add(
        entry_id: str,
        project_id: str | None,
        day: date,
        minutes: int,
        is_billable: bool = True,
        notes: str | None = None,
        is_skipped: bool = False,
        user_id: str = USER_ID,
    ) -> TimesheetEntry:
        async with session_factory() as session:
            entry = TimesheetEntry(
                id=entry_id,
                user_id=user_id,
                project_id=project_id,
                entry_date=day,
                duration=minutes,
                is_billable=is_billable,
                notes=notes,
                is_skipped=is_skipped,
            )
            session.add(entry)
            await session.commit()
            return entry

    return _add


@pytest.fixture
def sample_rm_project() -> RMProject:
    """Create a sample RM project."""
    return RMProject(id=4_100_000_000, name="Website Redesign", code="WEB-01")


@pytest.fixture
def mock_rm_client() -> MagicMock:
    """RM client whose writes succeed with increasing remote ids."""
    client = MagicMock(spec=RMClient)
    client.token = "test_token"
    remote_ids = itertools.count(5_000_000_001)

    async def _create(user_id: int, entry: RMTimeEntryInput) -> RMTimeEntry:
        return RMTimeEntry(
            id=next(remote_ids),
            user_id=user_id,
            assignable_id=entry.assignable_id,
            date=entry.date,
            hours=entry.hours,
            task=entry.task,
            notes=entry.notes,
        )

    async def _update(user_id: int, entry_id: int, entry: RMTimeEntryInput) -> RMTimeEntry:
        return RMTimeEntry(
            id=entry_id,
            user_id=user_id,
            assignable_id=entry.assignable_id,
            date=entry.date,
            hours=entry.hours,
            task=entry.task,
            notes=entry.notes,
        )

    client.create_time_entry = AsyncMock(side_effect=_create)
    client.update_time_entry = AsyncMock(side_effect=_update)
    return client


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records delays."""
    return AsyncMock(return_value=None)
