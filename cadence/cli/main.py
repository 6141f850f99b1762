"""
Cadence CLI entry point.

Commands:
    cadence list    — Show schedules and their next run
    cadence next    — Show the next fire time of one schedule
    cadence toggle  — Activate or deactivate a schedule
    cadence run     — Run the scheduler in the foreground
    cadence logs    — Show today's transition log
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="cadence",
    help="Cadence — recurring task scheduling for agent hosts.",
    add_completion=False,
)

console = Console()

WATCH_INTERVAL = 2.0  # seconds between schedules-file change checks


def _load_config(schedules: Path | None):
    from cadence.core.config import CadenceConfig
    from cadence.core.errors import ConfigError

    try:
        config = CadenceConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    if schedules is not None:
        config.scheduler.schedules_path = str(schedules)
    return config


def _open_store(config):
    from cadence.scheduler.store import JsonFilePersistence, ScheduleStore

    persistence = JsonFilePersistence(config.get_schedules_path())
    return ScheduleStore(persistence), persistence


def _fmt(value: datetime | None, tz) -> str:
    if value is None:
        return "—"
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M")


SchedulesOption = typer.Option(None, "--schedules", "-s", help="Path to schedules.json")


@app.command("list")
def list_schedules(schedules: Path = SchedulesOption) -> None:
    """List schedules with their cadence and next run."""
    from cadence.core.errors import PersistenceError
    from cadence.scheduler.calculator import describe_recurrence, next_execution_time

    config = _load_config(schedules)
    store, _ = _open_store(config)
    try:
        items = asyncio.run(store.load())
    except PersistenceError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if not items:
        console.print(f"[dim]No schedules in {config.get_schedules_path()}[/dim]")
        raise typer.Exit(0)

    tz = config.scheduler.tzinfo()
    now = datetime.now(tz)
    table = Table(title="Schedules", show_lines=False)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Mode")
    table.add_column("Cadence")
    table.add_column("If busy")
    table.add_column("Next run")
    table.add_column("Last run")
    table.add_column("Status")

    for s in items:
        nxt = next_execution_time(s, now, tz) if s.is_timer_driven else None
        if not s.active:
            status = "[yellow]inactive[/yellow]"
        elif s.is_timer_driven and nxt is None:
            status = "[red]expired[/red]"
        else:
            status = "[green]active[/green]"
        table.add_row(
            s.id,
            s.name,
            s.mode_display_name or s.mode,
            describe_recurrence(s) if s.schedule_type.value == "time" else "after task completion",
            s.task_interaction.value,
            _fmt(nxt, tz),
            _fmt(s.last_execution_time, tz),
            status,
        )
    console.print(table)


@app.command("next")
def next_run(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    schedules: Path = SchedulesOption,
) -> None:
    """Show when a schedule fires next."""
    from cadence.scheduler.calculator import next_execution_time

    config = _load_config(schedules)
    store, _ = _open_store(config)
    asyncio.run(store.load())
    schedule = store.get(schedule_id)
    if schedule is None:
        console.print(f"[red]Schedule with ID {schedule_id} not found.[/red]")
        raise typer.Exit(1)
    tz = config.scheduler.tzinfo()
    nxt = next_execution_time(schedule, datetime.now(tz), tz) if schedule.is_timer_driven else None
    if nxt is None:
        console.print(f'[yellow]"{schedule.name}" is not scheduled to run.[/yellow]')
    else:
        console.print(f'"{schedule.name}" runs next at [bold]{_fmt(nxt, tz)}[/bold]')


@app.command()
def toggle(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    active: bool = typer.Option(..., "--on/--off", help="Activate or deactivate"),
    schedules: Path = SchedulesOption,
) -> None:
    """Activate or deactivate a schedule in the schedules file."""
    config = _load_config(schedules)
    store, _ = _open_store(config)

    async def _toggle():
        await store.load()
        return await store.update(schedule_id, active=active)

    updated = asyncio.run(_toggle())
    if updated is None:
        console.print(f"[red]Schedule with ID {schedule_id} not found.[/red]")
        raise typer.Exit(1)
    state = "activated" if active else "deactivated"
    console.print(f'[green]"{updated.name}" {state}.[/green] A running scheduler picks this up on its next reload.')


@app.command()
def run(
    schedules: Path = SchedulesOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Log fires without starting tasks"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run the scheduler until interrupted."""
    try:
        asyncio.run(_run_engine(schedules, dry_run, verbose))
    except KeyboardInterrupt:
        console.print("[dim]Scheduler stopped.[/dim]")


async def _run_engine(schedules: Path | None, dry_run: bool, verbose: bool) -> None:
    from cadence.core.bus import EventBus
    from cadence.core.events import Event
    from cadence.middleware.logging import TransitionLog, setup_logging
    from cadence.runners.http import HttpTaskRunner
    from cadence.runners.mock import MockTaskRunner
    from cadence.scheduler.engine import SchedulerEngine

    config = _load_config(schedules)
    log_dir = config.get_log_dir()
    console_level = logging.DEBUG if verbose else getattr(
        logging, config.logging.console_level.upper(), logging.WARNING
    )
    setup_logging(log_dir=log_dir, console_level=console_level)
    logger = logging.getLogger("cadence")

    bus = EventBus()
    transition_log = TransitionLog(log_dir=log_dir, write_events=config.logging.write_events)
    bus.use(transition_log.middleware)

    async def echo(event: Event) -> None:
        if event.message:
            console.print(f"[dim]{datetime.now().strftime('%H:%M:%S')}[/dim] {event.message}")

    bus.on("schedule:*", echo)
    bus.on("schedules:*", echo)

    if dry_run:
        runner = MockTaskRunner()
    else:
        runner = HttpTaskRunner(
            base_url=config.runner.base_url,
            timeout=config.runner.timeout,
            token=config.runner.token,
        )
    store, persistence = _open_store(config)
    engine = SchedulerEngine(store=store, runner=runner, bus=bus, config=config.scheduler)

    console.print(
        f"[bold]Cadence[/bold] watching [cyan]{persistence.path}[/cyan]"
        + (" [yellow](dry run)[/yellow]" if dry_run else f" → {config.runner.base_url}")
    )
    await engine.start()
    try:
        await _watch_schedules_file(engine, persistence)
    finally:
        await engine.stop()
        await runner.close()
        logger.info("Scheduler stopped")


async def _watch_schedules_file(engine, persistence) -> None:
    """Send the reload signal whenever someone else rewrites the schedules file."""
    path = persistence.path
    last_seen = path.stat().st_mtime if path.exists() else None
    while True:
        await asyncio.sleep(WATCH_INTERVAL)
        current = path.stat().st_mtime if path.exists() else None
        if current == last_seen:
            continue
        last_seen = current
        if current is not None and current == persistence.saved_mtime:
            continue  # our own write
        await engine.notify_schedules_updated()


@app.command()
def logs(lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show")) -> None:
    """Show today's schedule transition log."""
    config = _load_config(None)
    log_file = config.get_log_dir() / f"schedules_{datetime.now().strftime('%Y%m%d')}.log"
    if not log_file.exists():
        console.print(f"[dim]No log file for today: {log_file}[/dim]")
        raise typer.Exit(0)
    with open(log_file, "r", encoding="utf-8") as f:
        all_lines = f.readlines()
    for line in all_lines[-lines:]:
        console.print(line.rstrip(), markup=False)


@app.command()
def version() -> None:
    """Show Cadence version."""
    from cadence import __version__

    console.print(f"Cadence v{__version__}")


if __name__ == "__main__":
    app()
