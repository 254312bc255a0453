"""Command-line interface for the RM timesheet synchronizer."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import AsyncIterator, Optional, TypeVar

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from rm_sync import __version__
from rm_sync.config import Config
from rm_sync.db import MappingStore, SyncLog, TimesheetStore, create_engine, create_session_factory, init_db
from rm_sync.db.models import RMConnection
from rm_sync.rm import RMApiError, RMClient
from rm_sync.sync.engine import SyncEngine
from rm_sync.sync.errors import MappingConflictError, SyncError
from rm_sync.sync.matching import suggest_matches
from rm_sync.sync.result import SyncStatus, UnitAction
from rm_sync.utils import get_logger, setup_logging

app = typer.Typer(help="Push timesheet hours to Resource Management")
mapping_app = typer.Typer(help="Manage local project to RM project mappings")
app.add_typer(mapping_app, name="mapping")
console = Console()
logger = get_logger(__name__)

T = TypeVar("T")

ConfigDirOption = typer.Option(
    None,
    "--config-dir",
    help="Configuration directory. Defaults to ~/.rm-sync/",
)
UserOption = typer.Option(
    None,
    "--user",
    "-u",
    help="Local user id. Defaults to the configured default user.",
)


@dataclass
class _Services:
    config: Config
    store: MappingStore
    sync_log: SyncLog
    timesheet: TimesheetStore


@asynccontextmanager
async def _services(config: Config) -> AsyncIterator[_Services]:
    """Open the database for the duration of one command."""
    engine = create_engine(config.database_url)
    try:
        await init_db(engine)
        factory = create_session_factory(engine)
        yield _Services(
            config=config,
            store=MappingStore(factory),
            sync_log=SyncLog(factory),
            timesheet=TimesheetStore(factory),
        )
    finally:
        await engine.dispose()


def _client(config: Config, user_id: str) -> RMClient:
    settings = config.settings
    return RMClient(
        token=config.storage.get_token(user_id),
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
    )


def _parse_date(value: str, option: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        console.print(f"[red]Invalid date for {option}: {value}. Use YYYY-MM-DD[/red]")
        raise typer.Exit(code=1)


def _resolve_user(config: Config, user: Optional[str]) -> str:
    user_id = config.resolve_user(user)
    if not user_id:
        console.print("[yellow]No user given and no default user configured.[/yellow]")
        console.print("Pass --user or run: rm-sync configure --user <id>")
        raise typer.Exit(code=1)
    return user_id


async def _require_connection(services: _Services, user_id: str) -> RMConnection:
    connection = await services.store.get_connection(user_id)
    if connection is None:
        console.print(f"[yellow]User {user_id} is not connected to RM.[/yellow]")
        console.print("Run: rm-sync configure")
        raise typer.Exit(code=1)
    return connection


def _run(action: str, coro: Callable[[], Awaitable[T]]) -> T:
    """Run a command coroutine, turning errors into exit code 1."""
    try:
        return asyncio.run(coro())
    except typer.Exit:
        raise
    except (SyncError, RMApiError) as e:
        logger.error(f"{action} failed: {e}")
        console.print(f"[red]{action} failed: {e}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"{action} failed: {e}", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def configure(
    user: Optional[str] = UserOption,
    make_default: bool = typer.Option(
        True,
        "--default/--no-default",
        help="Remember the user as the default for other commands.",
    ),
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Store the RM API token and connect a local user to RM."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)

    console.print("[bold cyan]RM Timesheet Sync Configuration[/bold cyan]")
    console.print()

    user_id = user or Prompt.ask("Local user id", default=config.settings.default_user_id)
    token = Prompt.ask("Enter your RM API token", password=True)
    if not token:
        console.print("[red]A token is required.[/red]")
        raise typer.Exit(code=1)

    async def _configure() -> None:
        settings = config.settings
        async with RMClient(
            token=token,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
        ) as client:
            rm_user = await client.validate_token()

        config.storage.set_token(token, user_id)
        async with _services(config) as services:
            await services.store.create_connection(user_id, rm_user)
        console.print(
            f"[green]✓ Connected to RM as {rm_user.display_name or rm_user.email} "
            f"(RM user {rm_user.id})[/green]"
        )

    _run("Configuration", _configure)

    if make_default:
        config.update_settings(default_user_id=user_id)
    console.print("\n[green]Configuration complete![/green]")
    console.print("Run 'rm-sync mapping suggest' to map your projects.")


@app.command()
def disconnect(
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Remove a user's RM connection with its mappings and history."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _disconnect() -> bool:
        async with _services(config) as services:
            removed = await services.store.delete_connection(user_id)
        config.storage.delete_token(user_id)
        return removed

    if _run("Disconnect", _disconnect):
        console.print(f"[green]✓ Disconnected user {user_id}[/green]")
    else:
        console.print(f"[yellow]User {user_id} was not connected.[/yellow]")


@mapping_app.command("list")
def mapping_list(
    user: Optional[str] = UserOption,
    show_disabled: bool = typer.Option(False, "--all", help="Include disabled mappings."),
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Show project mappings."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _list() -> None:
        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            mappings = await services.store.list_mappings(
                connection.id, enabled_only=not show_disabled
            )
            projects = {p.id: p.name for p in await services.timesheet.list_projects(user_id)}

        if not mappings:
            console.print("[yellow]No mappings configured yet.[/yellow]")
            return

        table = Table(title="Project Mappings")
        table.add_column("Project", style="cyan")
        table.add_column("RM Project", style="magenta")
        table.add_column("RM Id", style="magenta")
        table.add_column("Last Synced")
        table.add_column("State", style="yellow")
        for m in mappings:
            table.add_row(
                projects.get(m.project_id, m.project_id),
                m.rm_project_name,
                str(m.rm_project_id),
                m.last_synced_at.strftime("%Y-%m-%d %H:%M") if m.last_synced_at else "-",
                "ENABLED" if m.enabled else "DISABLED",
            )
        console.print(table)

    _run("Listing mappings", _list)


@mapping_app.command("add")
def mapping_add(
    project_id: str = typer.Argument(..., help="Local project id"),
    rm_project_id: int = typer.Argument(..., help="RM project id"),
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Map a local project to an RM project."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _add() -> None:
        async with _client(config, user_id) as client:
            rm_projects = await client.fetch_all_projects()
        rm_project = next((p for p in rm_projects if p.id == rm_project_id), None)
        if rm_project is None:
            console.print(f"[red]RM project {rm_project_id} not found or archived.[/red]")
            raise typer.Exit(code=1)

        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            await services.store.upsert_mapping(
                connection.id, project_id, rm_project.id, rm_project.name, rm_project.code
            )
        console.print(f"[green]✓ Mapped {project_id} -> {rm_project.name}[/green]")

    _run("Adding mapping", _add)


@mapping_app.command("remove")
def mapping_remove(
    project_id: str = typer.Argument(..., help="Local project id"),
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Delete the mapping of a local project."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _remove() -> bool:
        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            return await services.store.delete_mapping(connection.id, project_id)

    if _run("Removing mapping", _remove):
        console.print(f"[green]✓ Removed mapping for {project_id}[/green]")
    else:
        console.print(f"[yellow]No mapping for {project_id}.[/yellow]")


def _suggestions_command(user: Optional[str], config_dir: Optional[Path], apply: bool) -> None:
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _suggest() -> None:
        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            mapped = await services.store.get_enabled_mappings(connection.id)
            local = [
                (p.id, p.name)
                for p in await services.timesheet.list_projects(user_id)
                if p.id not in mapped
            ]
            if not local:
                console.print("[green]Every project is already mapped.[/green]")
                return

            async with _client(config, user_id) as client:
                rm_projects = await client.fetch_all_projects()
            suggestions = suggest_matches(local, rm_projects, config.settings.match_threshold)

            table = Table(title="Suggested Mappings")
            table.add_column("Project", style="cyan")
            table.add_column("RM Project", style="magenta")
            table.add_column("Score")
            table.add_column("Reason")
            if apply:
                table.add_column("Result", style="yellow")

            for project_id, name in local:
                suggestion = suggestions.get(project_id)
                if suggestion is None:
                    row = [name, "-", "-", "no match"]
                    if apply:
                        row.append("SKIPPED")
                    table.add_row(*row)
                    continue
                row = [
                    name,
                    suggestion.rm_project_name,
                    f"{suggestion.score:.2f}",
                    suggestion.reason,
                ]
                if not apply:
                    table.add_row(*row)
                    continue
                try:
                    await services.store.upsert_mapping(
                        connection.id,
                        project_id,
                        suggestion.rm_project_id,
                        suggestion.rm_project_name,
                        suggestion.rm_project_code,
                    )
                    table.add_row(*row, "MAPPED")
                except MappingConflictError:
                    table.add_row(*row, "CONFLICT")
            console.print(table)

    _run("Matching projects", _suggest)


@mapping_app.command("suggest")
def mapping_suggest(
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Suggest RM projects for unmapped local projects."""
    _suggestions_command(user, config_dir, apply=False)


@mapping_app.command("auto")
def mapping_auto(
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Map every unmapped local project to its best RM match."""
    _suggestions_command(user, config_dir, apply=True)


@app.command()
def sync(
    from_date: str = typer.Option(..., "--from", help="First day to sync (YYYY-MM-DD)."),
    to_date: str = typer.Option(..., "--to", help="Last day to sync (YYYY-MM-DD)."),
    force: bool = typer.Option(
        False,
        "--force",
        help="Rewrite units even when nothing changed since the last sync.",
    ),
    user: Optional[str] = UserOption,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Push hours for a date range to RM."""
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.INFO,
        config_dir=config_dir,
    )
    logger.info(f"RM Timesheet Sync v{__version__}")

    config = Config(config_dir)
    user_id = _resolve_user(config, user)
    start = _parse_date(from_date, "--from")
    end = _parse_date(to_date, "--to")

    async def _sync():
        async with _services(config) as services, _client(config, user_id) as client:
            engine = SyncEngine(
                store=services.store,
                sync_log=services.sync_log,
                timesheet=services.timesheet,
                client=client,
                settings=config.settings,
            )
            return await engine.sync(user_id, start, end, force_sync=force)

    mode_str = "[bold yellow]FORCED SYNC[/bold yellow]" if force else "[bold green]SYNC[/bold green]"
    console.print(f"Starting {mode_str} {start} -> {end}...")
    result = _run("Sync", _sync)

    table = Table(title="Sync Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="magenta")
    table.add_row("Status", result.status.value)
    table.add_row("Attempted", str(result.attempted))
    table.add_row("Created", str(result.created))
    table.add_row("Updated", str(result.updated))
    table.add_row("Recreated", str(result.recreated))
    table.add_row("Skipped", str(result.skipped))
    table.add_row("Failed", str(result.failed))
    table.add_row("Unmapped", str(len(result.unmapped_projects)))
    console.print(table)

    if result.unmapped_projects:
        console.print("\n[yellow]Unmapped projects:[/yellow]")
        for project_id in result.unmapped_projects:
            console.print(f"  - {project_id}")

    if result.failures:
        console.print("\n[red]Failures:[/red]")
        for failure in result.failures:
            console.print(f"  - {failure.project_id} {failure.day}: {failure.message}")

    raise typer.Exit(code=0 if result.failed == 0 else 1)


@app.command()
def preview(
    from_date: str = typer.Option(..., "--from", help="First day (YYYY-MM-DD)."),
    to_date: str = typer.Option(..., "--to", help="Last day (YYYY-MM-DD)."),
    force: bool = typer.Option(False, "--force", help="Treat unchanged units as updates."),
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Show what a sync would do without writing anything."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)
    start = _parse_date(from_date, "--from")
    end = _parse_date(to_date, "--to")

    async def _preview():
        async with _services(config) as services, _client(config, user_id) as client:
            engine = SyncEngine(
                store=services.store,
                sync_log=services.sync_log,
                timesheet=services.timesheet,
                client=client,
                settings=config.settings,
            )
            return await engine.preview(user_id, start, end, force_sync=force)

    result = _run("Preview", _preview)
    if not result.plans:
        console.print("[yellow]No entries in range.[/yellow]")
        return

    table = Table(title=f"Sync Preview {start} -> {end}")
    table.add_column("Day", style="cyan")
    table.add_column("Project", style="cyan")
    table.add_column("Hours", justify="right")
    table.add_column("Action", style="magenta")
    table.add_column("Reason")
    for plan in result.plans:
        table.add_row(
            plan.day.isoformat(),
            plan.project_id,
            f"{plan.total_hours:.2f}",
            plan.action.value.upper(),
            plan.reason or "",
        )
    console.print(table)
    console.print(
        f"{result.count(UnitAction.CREATE)} to create, "
        f"{result.count(UnitAction.UPDATE)} to update, "
        f"{result.count(UnitAction.SKIP)} skipped"
    )


_STATUS_STYLES = {
    SyncStatus.COMPLETED: "green",
    SyncStatus.PARTIAL: "yellow",
    SyncStatus.FAILED: "red",
    SyncStatus.RUNNING: "cyan",
}


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show."),
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Show recent sync runs."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _history():
        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            return await services.sync_log.get_history(connection.id, limit=limit)

    runs = _run("Loading history", _history)
    if not runs:
        console.print("[yellow]No syncs yet.[/yellow]")
        return

    table = Table(title="Sync History")
    table.add_column("Started", style="cyan")
    table.add_column("Status")
    table.add_column("Attempted", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Error")
    for run in runs:
        style = _STATUS_STYLES.get(run.status, "white")
        table.add_row(
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{run.status.value}[/{style}]",
            str(run.entries_attempted),
            str(run.entries_success),
            str(run.entries_failed),
            str(run.entries_skipped),
            run.error_message or "",
        )
    console.print(table)


@app.command()
def cleanup(
    reason: str = typer.Option(
        "manual cleanup",
        "--reason",
        help="Reason stored on the cancelled runs.",
    ),
    user: Optional[str] = UserOption,
    config_dir: Optional[Path] = ConfigDirOption,
) -> None:
    """Fail runs left RUNNING by a crashed process."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)
    user_id = _resolve_user(config, user)

    async def _cleanup() -> int:
        async with _services(config) as services:
            connection = await _require_connection(services, user_id)
            return await services.sync_log.cancel_stuck_runs(connection.id, reason)

    cancelled = _run("Cleanup", _cleanup)
    if cancelled:
        console.print(f"[green]✓ Cancelled {cancelled} stuck sync(s)[/green]")
    else:
        console.print("[green]No stuck syncs.[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"RM Timesheet Sync v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
