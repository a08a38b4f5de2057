"""CLI for the day planner: inspect recurrences, conflicts, free time and the sync queue."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from dayplanner.config import ConfigError, PlannerConfig, load_config
from dayplanner.core.logging import configure_logging
from dayplanner.core.state import JsonFileStateStore
from dayplanner.models import Event
from dayplanner.scheduling.availability import free_slots, suggest_optimal_time
from dayplanner.scheduling.conflicts import check_conflicts
from dayplanner.scheduling.intervals import is_valid_hhmm
from dayplanner.scheduling.recurrence import describe_recurrence, expand, occurrences_for_date
from dayplanner.sync.queue import OfflineQueue

_DATE = click.DateTime(formats=["%Y-%m-%d"])


def _load_events(data_file: Path) -> list[Event]:
    """Read events from a JSON file: either a list or ``{"events": [...]}``."""
    try:
        raw = json.loads(data_file.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Cannot read {data_file}: {exc}") from exc
    items: Any = raw.get("events", []) if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise click.ClickException(f"{data_file}: 'events' must be a list")
    try:
        return [Event.model_validate(item) for item in items]
    except ValidationError as exc:
        raise click.ClickException(f"{data_file}: invalid event: {exc}") from exc


def _find_event(events: list[Event], event_id: str) -> Event:
    for event in events:
        if event.id == event_id:
            return event
    raise click.ClickException(f"Event not found: {event_id}")


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory containing planner.toml",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None) -> None:
    """Day planner: recurring events, conflicts, free slots and offline sync."""
    if config_dir is None:
        config = PlannerConfig()
    else:
        try:
            config = load_config(config_dir)
        except ConfigError as exc:
            click.echo(f"Config error: {exc}", err=True)
            sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        planner_name=config.name,
    )
    ctx.obj = config


@cli.command("expand")
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--start", "range_start", type=_DATE, required=True, help="First day (YYYY-MM-DD)")
@click.option("--end", "range_end", type=_DATE, required=True, help="Last day, inclusive")
@click.option("--event-id", default=None, help="Only expand this event")
def expand_cmd(
    data_file: Path, range_start: datetime, range_end: datetime, event_id: str | None
) -> None:
    """List the occurrences of recurring events between two days."""
    events = _load_events(data_file)
    if event_id is not None:
        events = [_find_event(events, event_id)]

    found = 0
    for event in events:
        if not event.is_recurring or event.recurrence is None:
            continue
        occurrences = expand(event, range_start.date(), range_end.date())
        if not occurrences:
            continue
        click.echo(f"{event.title} ({describe_recurrence(event.recurrence)})")
        for occurrence in occurrences:
            click.echo(f"  {occurrence.id:<40} {_fmt(occurrence.start_at)}")
        found += len(occurrences)
    if not found:
        click.echo("No occurrences in range.")


@cli.command("conflicts")
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--event-id", required=True, help="Event to check against the others")
@click.option("--json", "as_json", is_flag=True, help="Print the advisory as JSON")
@click.pass_obj
def conflicts_cmd(config: PlannerConfig, data_file: Path, event_id: str, as_json: bool) -> None:
    """Report events overlapping the given event on its day."""
    events = _load_events(data_file)
    candidate = _find_event(events, event_id)
    advisory = check_conflicts(
        candidate,
        events,
        policy=config.conflict_policy,
        working_hours=config.working_hours,
    )
    if as_json:
        click.echo(json.dumps(advisory.to_payload(), indent=2))
        return
    if not advisory.has_conflicts:
        click.echo(f"No conflicts for {candidate.title}.")
        return
    click.echo(f"{candidate.title} conflicts with:")
    for conflict in advisory.conflicts:
        click.echo(f"  {conflict.title:<30} {_fmt(conflict.start_at)} - {_fmt(conflict.end_at)}")
    if advisory.suggested_slots:
        click.echo("Suggested times:")
        for slot in advisory.suggested_slots:
            click.echo(f"  {_fmt(slot.start_at)} - {_fmt(slot.end_at)}")


@cli.command("slots")
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--date", "day", type=_DATE, required=True, help="Day to inspect (YYYY-MM-DD)")
@click.option("--duration", type=click.IntRange(min=1), default=60, show_default=True)
@click.pass_obj
def slots_cmd(config: PlannerConfig, data_file: Path, day: datetime, duration: int) -> None:
    """List free slots within working hours."""
    events = _load_events(data_file)
    target: date = day.date()
    slots = free_slots(events, target, duration, config.working_hours)
    if not slots:
        click.echo(f"No free slots of {duration} minutes on {target.isoformat()}.")
        return
    scheduled = occurrences_for_date(events, target)
    click.echo(f"{target.isoformat()}: {len(scheduled)} scheduled, {len(slots)} free slot(s)")
    for slot in slots:
        click.echo(
            f"  {slot.start_at:%H:%M} - {slot.end_at:%H:%M}  ({int(slot.duration_minutes)} min)"
        )


@cli.command("suggest")
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--date", "day", type=_DATE, required=True, help="Day to place the event on")
@click.option("--duration", type=click.IntRange(min=1), required=True, help="Minutes needed")
@click.option("--preferred", default=None, help="Preferred start time (HH:MM)")
@click.pass_obj
def suggest_cmd(
    config: PlannerConfig,
    data_file: Path,
    day: datetime,
    duration: int,
    preferred: str | None,
) -> None:
    """Suggest a start time for a new event."""
    if preferred is not None and not is_valid_hhmm(preferred):
        raise click.BadParameter("must be HH:MM", param_hint="--preferred")
    events = _load_events(data_file)
    start = suggest_optimal_time(events, day.date(), duration, preferred, config.working_hours)
    if start is None:
        click.echo("No free time available.")
        sys.exit(1)
    click.echo(_fmt(start))


@cli.group("queue")
def queue_group() -> None:
    """Inspect the offline operation queue of a JSON store."""


def _open_queue(config: PlannerConfig, store_path: Path | None) -> OfflineQueue:
    path = store_path or (Path(config.storage.path) if config.storage.path else None)
    if path is None:
        raise click.UsageError("No store given: pass --store or configure [planner.storage] path")
    return OfflineQueue(
        JsonFileStateStore(path),
        config.sync.queue_key,
        last_sync_key=config.sync.last_sync_key,
        max_retries=config.sync.max_retries,
    )


@queue_group.command("list")
@click.option("--store", "store_path", type=click.Path(path_type=Path), default=None)
@click.pass_obj
def queue_list(config: PlannerConfig, store_path: Path | None) -> None:
    """List pending operations."""
    queue = _open_queue(config, store_path)

    async def _collect() -> tuple[list, datetime | None]:
        return await queue.pending(), await queue.last_sync()

    operations, last_sync = asyncio.run(_collect())
    click.echo(f"Last sync: {last_sync.isoformat() if last_sync else 'never'}")
    if not operations:
        click.echo("Queue is empty.")
        return
    click.echo(f"{'Id':<30} {'Type':<18} {'Key':<20} {'Item':<20} {'Retries'}")
    click.echo("-" * 96)
    for op in operations:
        click.echo(
            f"{op.id:<30} {op.type.value:<18} {op.storage_key:<20} "
            f"{op.item_id or '-':<20} {op.retry_count}"
        )


@queue_group.command("clear")
@click.option("--store", "store_path", type=click.Path(path_type=Path), default=None)
@click.confirmation_option(prompt="Discard all queued operations?")
@click.pass_obj
def queue_clear(config: PlannerConfig, store_path: Path | None) -> None:
    """Discard every pending operation."""
    queue = _open_queue(config, store_path)
    asyncio.run(queue.clear())
    click.echo("Queue cleared.")
