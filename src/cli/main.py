"""CLI commands for source health tracking."""

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import click
import structlog

from src.circle.importer import CircleImportError, load_circle_file
from src.circle.service import CircleService
from src.config.error_hints import format_validation_error
from src.observability.logging import configure_logging, parse_log_level
from src.scheduler.checker import FeedChecker
from src.scheduler.sweeper import SourceSweeper
from src.settings.app import AppSettings, get_settings
from src.sources.backoff import format_next_retry
from src.sources.constants import COMPONENT_CLI
from src.sources.copy import get_error_copy, get_status_badge_text, get_warning_copy
from src.sources.models import Source
from src.sources.state_machine import SourceStateTransitionError, SourceStatus
from src.store.errors import (
    MembershipNotFoundError,
    SourceNotFoundError,
    SourceNotPausedError,
)
from src.store.store import SourceStore


logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(UTC)


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _open_store(ctx: click.Context) -> SourceStore:
    settings: AppSettings = ctx.obj["settings"]
    store = SourceStore(ctx.obj["db_path"] or settings.db_path)
    store.connect()
    ctx.call_on_close(store.close)
    return store


def _build_sweeper(ctx: click.Context, store: SourceStore) -> SourceSweeper:
    settings: AppSettings = ctx.obj["settings"]
    checker = FeedChecker(
        timeout_seconds=settings.request_timeout_seconds,
        user_agent=settings.user_agent,
    )
    return SourceSweeper(
        store,
        checker,
        policy=settings.backoff_policy(),
        max_workers=settings.max_workers,
    )


def _describe_source(source: Source, now: datetime, timeout_seconds: float) -> None:
    """Print a source's display status with its fixed copy."""
    display = source.display_status(now, timeout_seconds)
    badge = get_status_badge_text(display, source.warning_code)
    click.echo(f"{source.id}  {source.url}")
    click.echo(f"  Status: {badge} ({display.value})")

    if display == SourceStatus.ERROR:
        copy = get_error_copy(source.error_code)
        click.echo(f"  {copy.title}. {copy.body}")
        if copy.action:
            click.echo(f"  {copy.action}")
    elif display == SourceStatus.WARNING:
        warning = get_warning_copy(source.warning_code)
        click.echo(f"  {warning.title}. {warning.body}")

    next_retry = format_next_retry(source.next_check_at, now)
    if next_retry and display in (SourceStatus.WARNING, SourceStatus.ERROR):
        click.echo(f"  Next check: {next_retry}")


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to SQLite database (default: SOURCE_HEALTH_DB_PATH).",
)
@click.option("--json-logs", is_flag=True, help="Emit JSON logs.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    db_path: Path | None,
    json_logs: bool,
    verbose: bool,
) -> None:
    """Source health tracking CLI."""
    settings = get_settings()
    level = logging.DEBUG if verbose else parse_log_level(settings.log_level)
    configure_logging(level=level, json_format=json_logs or settings.json_logs)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["db_path"] = db_path


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database and apply schema migrations."""
    store = _open_store(ctx)
    click.echo(
        f"Database ready: {store.db_path} (schema version {store.get_schema_version()})"
    )


@cli.command("add-source")
@click.argument("user_id")
@click.argument("url")
@click.option("--person", "person_name", default=None, help="Person the feed belongs to.")
@click.option("--title", default=None, help="Display title.")
@click.pass_context
def add_source(
    ctx: click.Context,
    user_id: str,
    url: str,
    person_name: str | None,
    title: str | None,
) -> None:
    """Add a source for USER_ID; it starts in draft until the next sweep."""
    store = _open_store(ctx)
    now = _now()

    person_id = None
    if person_name:
        service = CircleService(store)
        person, _ = service.add_person_to_circle(user_id, person_name, now)
        person_id = person.id

    source = store.create_source(
        user_id, url, now, person_id=person_id, title=title or person_name
    )
    click.echo(
        f"Source {source.id} ({source.source_type.value}) status: {source.status.value}"
    )


@cli.command()
@click.pass_context
def sweep(ctx: click.Context) -> None:
    """Check every source that is due now."""
    store = _open_store(ctx)
    result = _build_sweeper(ctx, store).sweep(_now())

    click.echo(f"Sweep {result.sweep_id}")
    click.echo(f"  Checked: {result.checked}")
    click.echo(f"  Active: {result.succeeded}")
    click.echo(f"  Warning: {result.degraded}")
    click.echo(f"  Error: {result.failed}")
    click.echo(f"  Skipped: {len(result.skipped)}")


@cli.command()
@click.argument("source_id")
@click.pass_context
def retry(ctx: click.Context, source_id: str) -> None:
    """Check SOURCE_ID now, using the normal retry rules."""
    settings: AppSettings = ctx.obj["settings"]
    store = _open_store(ctx)
    now = _now()

    try:
        _build_sweeper(ctx, store).check_now(source_id, now)
    except SourceNotFoundError as e:
        _fail(str(e))
    except SourceStateTransitionError as e:
        _fail(f"Cannot check source in status '{e.from_state.value}'")

    _describe_source(
        store.require_source(source_id), now, settings.validation_timeout_seconds
    )


@cli.command()
@click.argument("source_id")
@click.pass_context
def pause(ctx: click.Context, source_id: str) -> None:
    """Pause SOURCE_ID so it is no longer checked."""
    store = _open_store(ctx)

    try:
        source = store.pause_source(source_id, _now())
    except SourceNotFoundError as e:
        _fail(str(e))
    except SourceStateTransitionError as e:
        _fail(f"Cannot pause source in status '{e.from_state.value}'")

    click.echo(f"Source {source.id} paused")


@cli.command()
@click.argument("source_id")
@click.option("--url", "new_url", default=None, help="Replace the source URL.")
@click.pass_context
def resume(ctx: click.Context, source_id: str, new_url: str | None) -> None:
    """Resume a paused SOURCE_ID and check it immediately."""
    settings: AppSettings = ctx.obj["settings"]
    store = _open_store(ctx)
    now = _now()

    try:
        store.resume_source(source_id, now, new_url=new_url)
    except (SourceNotFoundError, SourceNotPausedError) as e:
        _fail(str(e))

    _build_sweeper(ctx, store).check_now(source_id, now)
    _describe_source(
        store.require_source(source_id), now, settings.validation_timeout_seconds
    )


@cli.command()
@click.argument("user_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def circle(ctx: click.Context, user_id: str, json_output: bool) -> None:
    """Show the people in USER_ID's circle with their status."""
    settings: AppSettings = ctx.obj["settings"]
    store = _open_store(ctx)
    service = CircleService(
        store,
        timeout_seconds=settings.validation_timeout_seconds,
        quiet_days=settings.quiet_days,
    )
    now = _now()
    people = service.get_circle_people(user_id, now)

    if json_output:
        click.echo(
            json.dumps([p.model_dump(mode="json") for p in people], indent=2)
        )
        return

    summary = service.get_circle_summary(user_id, now)
    click.echo(
        f"Circle: {summary.people_count} people, {summary.source_count} sources"
    )
    for person in people:
        quiet = " (quiet)" if person.is_quiet else ""
        click.echo(f"{person.display_name}  {person.status.value}{quiet}  [{person.id}]")
        for source in person.sources:
            checked = f", checked {source.checked_ago}" if source.checked_ago else ""
            click.echo(f"  - {source.url}  {source.badge_text}{checked}")


@cli.command()
@click.argument("user_id")
@click.argument("person_id")
@click.option("--unmute", is_flag=True, help="Unmute instead of mute.")
@click.pass_context
def mute(ctx: click.Context, user_id: str, person_id: str, unmute: bool) -> None:
    """Mute (or unmute) PERSON_ID in USER_ID's circle."""
    store = _open_store(ctx)

    try:
        CircleService(store).set_person_muted(user_id, person_id, not unmute, _now())
    except MembershipNotFoundError as e:
        _fail(str(e))

    click.echo(f"Person {person_id} {'unmuted' if unmute else 'muted'}")


@cli.command("remove-person")
@click.argument("user_id")
@click.argument("person_id")
@click.option(
    "--remove-sources",
    is_flag=True,
    help="Also detach the person's sources for this user.",
)
@click.pass_context
def remove_person(
    ctx: click.Context,
    user_id: str,
    person_id: str,
    remove_sources: bool,
) -> None:
    """Remove PERSON_ID from USER_ID's circle."""
    store = _open_store(ctx)
    removed = CircleService(store).remove_person_from_circle(
        user_id, person_id, _now(), remove_all_sources=remove_sources
    )
    if not removed:
        _fail(f"Person {person_id} is not in the circle")
    click.echo(f"Person {person_id} removed")


@cli.command("import-circle")
@click.argument("user_id")
@click.argument(
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def import_circle(ctx: click.Context, user_id: str, file_path: Path) -> None:
    """Import people and their feeds for USER_ID from a YAML file."""
    log = logger.bind(component=COMPONENT_CLI, command="import-circle")

    try:
        definition = load_circle_file(file_path)
    except CircleImportError as e:
        click.echo("Circle file validation failed:", err=True)
        for error in e.errors:
            formatted = format_validation_error(
                location=error["loc"],
                message=error["msg"],
                error_type=error["type"],
                include_hint=True,
            )
            click.echo(f"  - {formatted}", err=True)
        sys.exit(1)

    store = _open_store(ctx)
    service = CircleService(store)
    now = _now()
    people_added = 0
    sources_added = 0

    for entry in definition.people:
        person, created = service.add_person_to_circle(
            user_id, entry.name, now, avatar_url=entry.avatar_url
        )
        people_added += int(created)
        for feed in entry.feeds:
            store.create_source(
                user_id, feed, now, person_id=person.id, title=person.display_name
            )
            sources_added += 1

    log.info(
        "circle_imported",
        people=len(definition.people),
        people_created=people_added,
        sources=sources_added,
    )
    click.echo(
        f"Imported {len(definition.people)} people "
        f"({people_added} new) and {sources_added} sources"
    )


if __name__ == "__main__":
    cli()
