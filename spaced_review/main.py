"""Command-line entry point for the Spaced Review Scheduler."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from spaced_review.app import AppSettings, bootstrap
from spaced_review.app.runtime import configure_logging
from spaced_review.db import run_migrations
from spaced_review.scheduling.errors import StorageUnavailableError, ValidationError
from spaced_review.scheduling.records import ScheduleRecord

__all__ = ["app", "main"]

app = typer.Typer(help="Spaced-repetition review scheduler")
console = Console()

_DATE_FORMATS = ["%Y-%m-%d"]


def _resolve_today(today: Optional[datetime]) -> date:
    return today.date() if today is not None else date.today()


def _schedule_table(title: str, schedules: List[ScheduleRecord], today: date) -> Table:
    table = Table(title=title)
    table.add_column("Item")
    table.add_column("Next review")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    table.add_column("Reps", justify="right")
    for record in schedules:
        days = record.days_until_due(today)
        when = f"{record.next_review_date.isoformat()} ({days:+d}d)"
        table.add_row(
            record.item_id,
            when,
            str(record.interval),
            f"{record.ease_factor:.2f}",
            str(record.repetitions),
        )
    return table


def _storage_failure(exc: StorageUnavailableError, message: str) -> typer.Exit:
    console.print(f"[red]✗[/red] {message}")
    console.print(f"[dim]{exc}[/dim]")
    return typer.Exit(code=1)


@app.command()
def migrate() -> None:
    """Apply database migrations."""
    settings = AppSettings.from_env()
    configure_logging(settings.log_level)
    run_migrations()
    console.print("[green]✓[/green] Database schema is up to date.")


@app.command()
def review(
    learner_id: str,
    item_id: str,
    quality: float = typer.Argument(..., help="Recall quality, 1 (failure) to 5 (perfect)."),
    today: Optional[datetime] = typer.Option(None, formats=_DATE_FORMATS),
) -> None:
    """Record a review and print the new schedule."""
    service = bootstrap(AppSettings.from_env())
    try:
        record = asyncio.run(
            service.record_review(learner_id, item_id, quality, _resolve_today(today))
        )
    except ValidationError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=2)
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Review not recorded, please retry.")

    console.print(
        f"[green]✓[/green] Next review of [bold]{record.item_id}[/bold] on "
        f"{record.next_review_date.isoformat()} (interval {record.interval}d, "
        f"ease {record.ease_factor:.2f}, repetitions {record.repetitions})"
    )


@app.command()
def due(
    learner_id: str,
    today: Optional[datetime] = typer.Option(None, formats=_DATE_FORMATS),
    horizon: Optional[int] = typer.Option(None, min=0, help="Days ahead counted as upcoming."),
) -> None:
    """Show due and upcoming reviews."""
    service = bootstrap(AppSettings.from_env())
    current = _resolve_today(today)
    try:
        due_set = asyncio.run(service.get_due_items(learner_id, current, horizon))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Could not load review schedules, please retry.")

    console.print(_schedule_table("Due", due_set.due_by_date(), current))
    console.print(_schedule_table("Upcoming", due_set.upcoming, current))


@app.command()
def stats(
    learner_id: str,
    today: Optional[datetime] = typer.Option(None, formats=_DATE_FORMATS),
) -> None:
    """Show review statistics."""
    service = bootstrap(AppSettings.from_env())
    try:
        summary = asyncio.run(service.get_stats(learner_id, _resolve_today(today)))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Could not load review statistics, please retry.")

    table = Table(title=f"Review statistics for {learner_id}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in summary.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("export")
def export_command(
    learner_id: str,
    today: Optional[datetime] = typer.Option(None, formats=_DATE_FORMATS),
) -> None:
    """Print the learner's schedules as JSON."""
    service = bootstrap(AppSettings.from_env())
    try:
        payload = asyncio.run(service.export_schedules(learner_id, _resolve_today(today)))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Could not export review schedules, please retry.")
    typer.echo(json.dumps(payload, indent=2))


@app.command("import")
def import_command(
    learner_id: str,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    """Load schedules from a JSON file produced by ``export``."""
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[red]✗[/red] {source} is not valid JSON: {exc}")
        raise typer.Exit(code=2)
    if not isinstance(payload, list):
        console.print(f"[red]✗[/red] {source} must contain a JSON list of schedules.")
        raise typer.Exit(code=2)

    service = bootstrap(AppSettings.from_env())
    try:
        result = asyncio.run(service.import_schedules(learner_id, payload))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Import interrupted, please retry.")

    console.print(f"[green]✓[/green] Imported {result.imported} schedules.")
    for error in result.errors:
        console.print(f"[yellow]![/yellow] {error}")


@app.command()
def remove(learner_id: str, item_id: str) -> None:
    """Delete a learner's schedule for one item."""
    service = bootstrap(AppSettings.from_env())
    try:
        removed = asyncio.run(service.remove_schedule(learner_id, item_id))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc, "Schedule not removed, please retry.")

    if removed:
        console.print(f"[green]✓[/green] Removed schedule for {item_id}.")
    else:
        console.print(f"No schedule found for {item_id}.")


def main() -> None:
    """Entry point for the application."""
    app()


if __name__ == "__main__":
    main()
